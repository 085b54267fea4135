"""
dependencies.py — shared FastAPI dependencies.

Authentication itself happens upstream (the gateway / frontend session layer);
this service only trusts the X-User-Id header it forwards.
"""
from typing import Optional

from fastapi import Header, HTTPException


async def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Return the caller's user id or 401 if the header is missing or blank."""
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()
