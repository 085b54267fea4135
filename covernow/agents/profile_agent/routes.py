"""
ProfileAgent HTTP routes — POST /api/profile, GET /api/profile

POST creates the profile row at signup (identity fields only; everything else
is filled in later through the updateUserProfile tool during chat).
GET returns the same camelCase shape the getUserProfile tool hands the model.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from covernow import store
from covernow.agents.profile_agent.schemas import CreateProfileRequest, UserProfileView
from covernow.database import get_db
from covernow.dependencies import get_user_id

router = APIRouter(prefix="/api", tags=["profile_agent"])
logger = logging.getLogger(__name__)


@router.post("/profile")
async def create_profile(
    body: CreateProfileRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    if await store.get_profile(db, user_id) is not None:
        raise HTTPException(status_code=409, detail="Profile already exists")

    record = await store.create_profile(db, user_id, body.firstName, body.lastName)
    return JSONResponse(
        status_code=201,
        content=UserProfileView.from_record(record).model_dump(),
    )


@router.get("/profile")
async def read_profile(
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    record = await store.get_profile(db, user_id)
    if record is None:
        raise HTTPException(status_code=404, detail=store.PROFILE_NOT_FOUND)
    logger.info("Profile read user_id=%s", user_id)
    return JSONResponse(
        status_code=200,
        content=UserProfileView.from_record(record).model_dump(),
    )
