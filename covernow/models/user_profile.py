"""
models/user_profile.py — SQLAlchemy ORM model for insurance user profiles.

Table: user_profile
One row per user. Mutated only through the confirmation gate/resolver
(profile_agent/confirmation.py) and the issue-list manager (profile_agent/issues.py).

Age is never stored — dob is the single source of truth and age is computed on read.
annual_income / coverage_amount are always base currency units (rupees);
lakh/crore conversion happens in the request schema, never here.
"""
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from covernow.database import Base, JSONType


class UserProfileORM(Base):
    """
    ORM model for a user's insurance profile.

    issues / has_issues are always written together: has_issues is derived
    (len(issues) > 0) and never set on its own.
    """
    __tablename__ = "user_profile"

    user_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment="Authenticated user id — immutable",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    dob: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        comment="Date of birth — strictly in the past. Age is derived from this.",
    )
    gender: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Free-form, stored verbatim exactly as the user stated it",
    )
    is_married: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    annual_income: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Annual income in rupees (base units, never lakhs/crores)",
    )
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    occupation: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    smoking_status: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    coverage_amount: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Desired life cover in rupees (base units)",
    )
    policy_term: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Desired policy term in years (5-40)",
    )

    issues: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Ordered, case-insensitive-unique list of health issues",
    )
    has_issues: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Derived: len(issues) > 0. Recomputed on every issues write.",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
