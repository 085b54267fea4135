"""
schemas.py — ProfileAgent Pydantic v2 data contracts.

Defines:
  - ProfileRecord           (persistence-agnostic view of a user_profile row)
  - UserProfileView         (getUserProfile / GET /api/profile response shape, camelCase)
  - ProfileUpdateRequest    (partial update proposed by the model)
  - ConflictingField, Applied, NeedsConfirmation, Resolved   (gate/resolver outcomes)
  - IssueOperation, IssuesOutcome                            (issue-list manager)
  - CreateProfileRequest    (signup-time profile creation)

LOCKED FIELD NAMES: ProfileUpdateRequest uses camelCase attribute names because they
ARE the tool wire contract and are stored verbatim as conversations.pending_confirmation.
Do not rename without migrating staged confirmations.
"""
import re
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from covernow.errors import InputValidationError


# ---------------------------------------------------------------------------
# Field registry: camelCase wire name → (user_profile column, display name)
# ---------------------------------------------------------------------------

PROFILE_FIELDS: dict[str, tuple[str, str]] = {
    "dob": ("dob", "date of birth"),
    "gender": ("gender", "gender"),
    "isMarried": ("is_married", "marital status"),
    "annualIncome": ("annual_income", "annual income"),
    "city": ("city", "city"),
    "smokingStatus": ("smoking_status", "smoking status"),
    "occupation": ("occupation", "occupation"),
    "coverageAmount": ("coverage_amount", "coverage amount"),
    "policyTerm": ("policy_term", "policy term"),
}

# Booleans read better as words in the confirmation sentence
BOOLEAN_LABELS: dict[str, tuple[str, str]] = {
    "isMarried": ("married", "single"),
    "smokingStatus": ("smoker", "non-smoker"),
}

_LAKH = 100_000
_CRORE = 10_000_000
_AMOUNT_RE = re.compile(
    r"^\s*(?:rs\.?|inr|₹)?\s*([\d,]*\.?\d+)\s*(lakhs?|lacs?|l|crores?|cr)?\s*$",
    re.IGNORECASE,
)


def to_base_units(value: Any) -> Any:
    """
    Normalise a money amount to base currency units (rupees).

    Numbers pass through untouched. Strings such as "15 lakh", "1.5 crore",
    "₹15,00,000" or "2cr" are converted; anything else is returned as-is so the
    float validator reports it.
    """
    if not isinstance(value, str):
        return value
    match = _AMOUNT_RE.match(value)
    if match is None:
        return value
    number = float(match.group(1).replace(",", ""))
    unit = (match.group(2) or "").lower()
    if unit.startswith("l"):
        number *= _LAKH
    elif unit.startswith("c"):
        number *= _CRORE
    return number


# ---------------------------------------------------------------------------
# Stored profile
# ---------------------------------------------------------------------------

class ProfileRecord(BaseModel):
    """Snapshot of a user_profile row. Returned by store.get_profile()."""

    user_id: str
    first_name: str
    last_name: Optional[str] = None
    dob: Optional[date] = None
    gender: Optional[str] = None
    is_married: Optional[bool] = None
    annual_income: Optional[float] = None
    city: Optional[str] = None
    occupation: Optional[str] = None
    smoking_status: Optional[bool] = None
    coverage_amount: Optional[float] = None
    policy_term: Optional[int] = None
    issues: List[str] = Field(default_factory=list)
    has_issues: bool = False

    def age(self, today: Optional[date] = None) -> Optional[int]:
        """Completed years since dob, or None when dob is unknown."""
        if self.dob is None:
            return None
        today = today or date.today()
        years = today.year - self.dob.year
        if (today.month, today.day) < (self.dob.month, self.dob.day):
            years -= 1
        return years


class UserProfileView(BaseModel):
    """getUserProfile payload. Age is computed here, never read from storage."""

    firstName: str
    lastName: Optional[str] = None
    age: Optional[int] = None
    dob: Optional[str] = None
    gender: Optional[str] = None
    isMarried: Optional[bool] = None
    hasIssues: bool = False
    issues: List[str] = Field(default_factory=list)
    annualIncome: Optional[float] = None
    city: Optional[str] = None
    smokingStatus: Optional[bool] = None
    occupation: Optional[str] = None
    coverageAmount: Optional[float] = None
    policyTerm: Optional[int] = None

    @classmethod
    def from_record(cls, record: ProfileRecord, today: Optional[date] = None) -> "UserProfileView":
        return cls(
            firstName=record.first_name,
            lastName=record.last_name,
            age=record.age(today),
            dob=record.dob.isoformat() if record.dob else None,
            gender=record.gender,
            isMarried=record.is_married,
            hasIssues=record.has_issues,
            issues=list(record.issues),
            annualIncome=record.annual_income,
            city=record.city,
            smokingStatus=record.smoking_status,
            occupation=record.occupation,
            coverageAmount=record.coverage_amount,
            policyTerm=record.policy_term,
        )


class CreateProfileRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    firstName: str = Field(..., min_length=1, max_length=100)
    lastName: Optional[str] = Field(default=None, max_length=100)


# ---------------------------------------------------------------------------
# Profile update request
# ---------------------------------------------------------------------------

class ProfileUpdateRequest(BaseModel):
    """
    Partial profile update proposed by the model (updateUserProfile tool).

    extra='forbid' — unknown keys are a validation error, not silently dropped.
    age is accepted only so it can be handled explicitly: with dob it is ignored,
    without dob the whole update is rejected (ask the user for their date of birth).
    """
    model_config = ConfigDict(extra="forbid")

    dob: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-\d{2}-\d{2}$",
        description="Date of birth, YYYY-MM-DD, strictly in the past.",
    )
    gender: Optional[str] = Field(default=None, description="Stored verbatim, no normalisation.")
    isMarried: Optional[bool] = None
    annualIncome: Optional[float] = Field(default=None, ge=0, description="Rupees, base units.")
    city: Optional[str] = None
    smokingStatus: Optional[bool] = None
    occupation: Optional[str] = None
    coverageAmount: Optional[float] = Field(default=None, ge=0, description="Rupees, base units.")
    policyTerm: Optional[int] = Field(default=None, ge=5, le=40, description="Years.")
    age: Optional[int] = Field(default=None, ge=0, le=120)

    @field_validator("annualIncome", "coverageAmount", mode="before")
    @classmethod
    def _amount_in_base_units(cls, value: Any) -> Any:
        return to_base_units(value)

    @field_validator("dob")
    @classmethod
    def _dob_in_the_past(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            parsed = date.fromisoformat(value)
        except ValueError:
            raise ValueError("Invalid date format. Use YYYY-MM-DD")
        if parsed >= date.today():
            raise ValueError("Date of birth must be in the past")
        return value

    @model_validator(mode="after")
    def _age_requires_dob(self) -> "ProfileUpdateRequest":
        if self.age is not None and self.dob is None:
            raise ValueError(
                "Age cannot be stored directly. Ask for the date of birth (YYYY-MM-DD) instead."
            )
        return self

    def provided_fields(self) -> dict[str, Any]:
        """Fields actually supplied, in declaration order, with age dropped."""
        data = self.model_dump(exclude_none=True)
        data.pop("age", None)
        return data


def parse_profile_update(raw: Union[dict[str, Any], ProfileUpdateRequest]) -> ProfileUpdateRequest:
    """
    Validate a raw update dict, converting pydantic errors into InputValidationError.

    Also rejects an update that carries no storable field.
    """
    if isinstance(raw, ProfileUpdateRequest):
        request = raw
    else:
        try:
            request = ProfileUpdateRequest.model_validate(raw)
        except ValidationError as exc:
            messages = []
            for err in exc.errors():
                field = ".".join(str(loc) for loc in err["loc"])
                msg = err["msg"].removeprefix("Value error, ")
                messages.append(f"{field}: {msg}" if field else msg)
            raise InputValidationError(f"Validation error: {', '.join(messages)}") from exc

    if not request.provided_fields():
        raise InputValidationError("No fields to update. Please provide at least one field.")
    return request


# ---------------------------------------------------------------------------
# Gate / resolver outcomes: a tagged union, discriminated by `kind`
# ---------------------------------------------------------------------------

class ConflictingField(BaseModel):
    field: str
    currentValue: Any
    newValue: Any
    displayName: str


class Applied(BaseModel):
    kind: Literal["applied"] = "applied"
    updated_fields: List[str]


class NeedsConfirmation(BaseModel):
    kind: Literal["needs_confirmation"] = "needs_confirmation"
    conflicting_fields: List[ConflictingField]
    confirmation_message: str
    proposed: dict[str, Any]


ProposeOutcome = Union[Applied, NeedsConfirmation]


class Resolved(BaseModel):
    action: Literal["updated", "cancelled"]
    message: str
    updated_fields: List[str] = Field(default_factory=list)


class PendingConfirmation(BaseModel):
    data: dict[str, Any]
    created_at: datetime


# ---------------------------------------------------------------------------
# Issue list
# ---------------------------------------------------------------------------

class IssueOperation(str, Enum):
    add = "add"
    remove = "remove"
    clear = "clear"


class IssuesOutcome(BaseModel):
    message: str
    issues: List[str]
