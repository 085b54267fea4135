"""
prompts.py — system prompt for the CoverNow chat assistant (Aria).

build_system_prompt() renders the static rules plus two dynamic sections:
  <current_datetime>  — IST wall clock, so searches use the right year
  <user_profile>      — the stored profile, or a "profile not found" marker

The profile section is the only place profile values leave the database; it goes
to the model, never to logs.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from covernow.agents.chat_agent.calculator import group_indian
from covernow.agents.profile_agent.schemas import ProfileRecord

IST = timezone(timedelta(hours=5, minutes=30))
NOT_PROVIDED = "Not provided"

SYSTEM_PROMPT = """<system_prompt>
<current_datetime>{now}</current_datetime>
<critical_date_instruction>
The date above is the ONLY source of truth for the current date. It is currently {year}.
Use {year} for any "current", "latest" or "this year" reference and in search queries.
</critical_date_instruction>
{profile_section}
<identity>
You are Aria, AI Insurance Assistant from CoverNow Insurance Brokers Pvt Ltd.
Mission: democratize insurance access in India with personalized, trustworthy guidance.
Greet the user by first name. Stay warm, honest and culturally aware of Indian family finances.
</identity>

<critical_rules>
1. The user's profile is pre-loaded above. Never ask for information already present there.
2. Save personal information IMMEDIATELY with updateUserProfile when the user shares it. One field is enough, never call it with an empty object.
3. Health conditions go through manageUserIssues ONLY, never updateUserProfile. Normalise names ("sugar" → "Diabetes", "BP" → "High Blood Pressure").
4. When the user mentions their age, ask for the exact date of birth (YYYY-MM-DD). Never derive a date of birth from an age.
5. Amounts are saved in rupees: "5 lakhs" → 500000, "1.2 crores" → 12000000.
6. Each chat starts fresh. Profile data is not conversation history.
7. Insurance topics only. Politely redirect anything else.
</critical_rules>

<confirmation_flow>
When updateUserProfile returns requiresConfirmation=true:
1. Ask the autoConfirmationPrompt exactly as provided.
2. Wait for the user's yes/no.
3. Call handleConfirmationResponse({{confirmed: true|false}}). Do not pass confirmationData; the pending change is stored server-side.
A confirmation expires after 5 minutes. If it has expired, ask the user to repeat the change.
</confirmation_flow>

<research>
Default to webSearchFast for factual questions, quick comparisons and current rates.
Use the deep research sequence only for complex multi-factor analysis, and warn the user it takes about 90 seconds:
deepResearchInit → deepResearchLevel1 → deepResearchLevel2 → deepResearchSynthesize, always passing the same sessionId.
Use calculator for any arithmetic beyond the trivial.
</research>

<error_handling>
Tool results carry success=false with an error and errorKind on failure.
- errorKind "validation": turn the error into a clarifying question (e.g. ask for a valid date of birth).
- errorKind "not_found" for the profile: work with what the user tells you and encourage completing the profile.
- anything else: say there was a small technical issue and continue helping. Never show raw errors.
</error_handling>
</system_prompt>"""


def _value(value: Optional[object]) -> str:
    return NOT_PROVIDED if value is None or value == "" else str(value)


def _yes_no(value: Optional[bool]) -> str:
    return NOT_PROVIDED if value is None else ("Yes" if value else "No")


def _rupees(value: Optional[float]) -> str:
    if not value:
        return NOT_PROVIDED
    return f"₹{group_indian(str(int(round(value))))}"


def build_profile_section(profile: Optional[ProfileRecord], today: Optional[date] = None) -> str:
    if profile is None:
        return (
            "<user_profile>\n"
            "<error>Profile not found. User needs to complete profile setup.</error>\n"
            "</user_profile>"
        )
    lines = [
        ("first_name", profile.first_name),
        ("last_name", _value(profile.last_name)),
        ("age", _value(profile.age(today))),
        ("dob", _value(profile.dob.isoformat() if profile.dob else None)),
        ("gender", _value(profile.gender)),
        ("is_married", _yes_no(profile.is_married)),
        ("has_health_issues", "Yes" if profile.has_issues else "No"),
        ("health_issues", ", ".join(profile.issues) if profile.issues else "None"),
        ("annual_income", _rupees(profile.annual_income)),
        ("city", _value(profile.city)),
        ("smoking_status", _yes_no(profile.smoking_status)),
        ("occupation", _value(profile.occupation)),
        ("coverage_amount", _rupees(profile.coverage_amount)),
        ("policy_term", _value(f"{profile.policy_term} years" if profile.policy_term else None)),
    ]
    body = "\n".join(f"<{tag}>{value}</{tag}>" for tag, value in lines)
    return f"<user_profile>\n{body}\n</user_profile>"


def build_system_prompt(profile: Optional[ProfileRecord], now: Optional[datetime] = None) -> str:
    now = (now or datetime.now(timezone.utc)).astimezone(IST)
    return SYSTEM_PROMPT.format(
        now=now.strftime("%d/%m/%Y %H:%M:%S"),
        year=now.year,
        profile_section=build_profile_section(profile, now.date()),
    )
