"""
profile_tools.py — LangChain tools over the profile store.

Tools:
  getUserProfile              — current profile (age computed from dob)
  updateUserProfile           — confirmation gate: apply, or stage and ask
  handleConfirmationResponse  — confirmation resolver for the staged update
  manageUserIssues            — add / remove / clear health issues

Argument schemas here are deliberately loose (strings allowed for money amounts,
plain str for the issue operation) so the model's raw values reach the domain
validators in agents/profile_agent/, which own the user-facing error messages.
"""
import logging
from typing import Any, Optional, Union

from langchain_core.runnables import RunnableConfig
from langchain_core.tools import tool
from pydantic import BaseModel, ConfigDict, Field

from covernow import store
from covernow.agents.profile_agent.confirmation import propose_update, resolve_confirmation
from covernow.agents.profile_agent.issues import mutate_issues
from covernow.agents.profile_agent.schemas import NeedsConfirmation, UserProfileView
from covernow.errors import NotFoundError
from covernow.graph.tools.common import (
    require_conversation,
    require_db,
    tool_context,
    tool_payload,
)

logger = logging.getLogger(__name__)


class GetUserProfileArgs(BaseModel):
    pass


class UpdateUserProfileArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dob: Optional[str] = Field(
        default=None,
        description="User's date of birth in YYYY-MM-DD format. Always prefer collecting this over 'age'.",
    )
    gender: Optional[str] = Field(
        default=None,
        description="User's gender identity. Capture this exactly as the user states it.",
    )
    isMarried: Optional[bool] = Field(
        default=None,
        description="User's marital status. Use true for 'married' and false for 'single' or 'unmarried'.",
    )
    annualIncome: Optional[Union[float, str]] = Field(
        default=None,
        description="User's annual income in rupees (e.g. 1500000, or '15 lakh').",
    )
    city: Optional[str] = Field(default=None, description="User's city of residence")
    smokingStatus: Optional[bool] = Field(
        default=None,
        description="Whether the user smokes. True for smoker, false for non-smoker.",
    )
    occupation: Optional[str] = Field(
        default=None,
        description="User's occupation/profession. Important for risk assessment in insurance.",
    )
    coverageAmount: Optional[Union[float, str]] = Field(
        default=None,
        description="Desired life insurance coverage in rupees (e.g. 7500000 for 75 lakhs).",
    )
    policyTerm: Optional[int] = Field(
        default=None,
        description="Desired insurance policy term in years (5-40).",
    )
    age: Optional[int] = Field(
        default=None,
        description="Only if the user refuses to give a date of birth. Never stored.",
    )


class HandleConfirmationArgs(BaseModel):
    confirmed: bool = Field(..., description="Whether the user confirmed (true) or declined (false) the update")
    confirmationData: Optional[dict[str, Any]] = Field(
        default=None,
        description="The original data that was pending confirmation",
    )


class ManageUserIssuesArgs(BaseModel):
    operation: str = Field(
        ...,
        description="The operation to perform: 'add' a new issue, 'remove' an existing one, or 'clear' all issues.",
    )
    issue: Optional[str] = Field(
        default=None,
        description="The specific health issue to add or remove (e.g. 'Diabetes'). Required for add and remove.",
    )


@tool("getUserProfile", args_schema=GetUserProfileArgs)
@tool_payload("getUserProfile")
async def get_user_profile_tool(config: RunnableConfig) -> dict:
    """CRITICAL: Get the current user's profile information. This MUST be called first in every conversation before any other response."""
    ctx = tool_context(config)
    record = await store.get_profile(require_db(ctx), ctx.user_id)
    if record is None:
        raise NotFoundError(store.PROFILE_NOT_FOUND)
    return {"success": True, "data": UserProfileView.from_record(record).model_dump()}


@tool("updateUserProfile", args_schema=UpdateUserProfileArgs)
@tool_payload("updateUserProfile")
async def update_user_profile_tool(config: RunnableConfig, **fields: Any) -> dict:
    """Update user profile fields (excluding health issues). Automatically handles confirmation when a field already has a different value."""
    ctx = tool_context(config)
    outcome = await propose_update(
        require_db(ctx),
        ctx.user_id,
        require_conversation(ctx),
        {k: v for k, v in fields.items() if v is not None},
    )
    if isinstance(outcome, NeedsConfirmation):
        return {
            "success": False,
            "requiresConfirmation": True,
            "confirmationData": outcome.proposed,
            "conflictingFields": [c.model_dump() for c in outcome.conflicting_fields],
            "confirmationMessage": outcome.confirmation_message,
            "autoConfirmationPrompt": (
                f"I need to confirm some changes with you. {outcome.confirmation_message} "
                f"Would you like me to make these updates?"
            ),
        }
    return {
        "success": True,
        "message": "Profile updated successfully",
        "updatedFields": outcome.updated_fields,
    }


@tool("handleConfirmationResponse", args_schema=HandleConfirmationArgs)
@tool_payload("handleConfirmationResponse")
async def handle_confirmation_response_tool(
    config: RunnableConfig,
    confirmed: bool,
    confirmationData: Optional[dict[str, Any]] = None,
) -> dict:
    """INTERNAL: Handle the user's yes/no response to a profile update confirmation. Call it right after the user answers the confirmation prompt."""
    ctx = tool_context(config)
    if confirmationData:
        # The staged record is authoritative; the echo is never applied.
        logger.debug("Ignoring confirmationData echo fields=%s", sorted(confirmationData))
    resolved = await resolve_confirmation(
        require_db(ctx), ctx.user_id, require_conversation(ctx), confirmed
    )
    payload = {"success": True, "message": resolved.message, "action": resolved.action}
    if resolved.updated_fields:
        payload["updatedFields"] = resolved.updated_fields
    return payload


@tool("manageUserIssues", args_schema=ManageUserIssuesArgs)
@tool_payload("manageUserIssues")
async def manage_user_issues_tool(
    config: RunnableConfig,
    operation: str,
    issue: Optional[str] = None,
) -> dict:
    """Manage the user's health issues list: add, remove or clear."""
    ctx = tool_context(config)
    outcome = await mutate_issues(require_db(ctx), ctx.user_id, operation, issue)
    return {"success": True, "message": outcome.message, "issues": outcome.issues}


PROFILE_TOOLS = [
    get_user_profile_tool,
    update_user_profile_tool,
    handle_confirmation_response_tool,
    manage_user_issues_tool,
]
