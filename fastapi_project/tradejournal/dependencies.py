"""
Identity Dependency

Beginner guide:
- Every journal row belongs to a user id; routers get it from get_current_user_id.
- The id comes from the X-User-Id header set by whatever sits in front of the API.
- DISABLE_AUTH=1 (default in local dev) falls back to the user "local" when the header is missing.
- With DISABLE_AUTH=0 a missing header is a 401.
"""

import os

from dotenv import load_dotenv
from fastapi import Header, HTTPException, status
from typing import Optional

load_dotenv()
DISABLE_AUTH = os.getenv("DISABLE_AUTH", "1") in ("1", "true", "True")
LOCAL_USER_ID = "local"


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    user_id = (x_user_id or "").strip()
    if user_id:
        return user_id
    if DISABLE_AUTH:
        return LOCAL_USER_ID
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )
