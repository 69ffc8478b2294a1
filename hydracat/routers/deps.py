"""
Router dependencies
===================
get_stack() hands routes the process-wide LoggingStack.
get_active_profile() resolves the bearer token to an owner and checks
that the pet named in `X-Pet-Id` belongs to that owner.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from hydracat.db.supabase import get_supabase_client
from hydracat.services.profile import ActiveProfile
from hydracat.stack import LoggingStack

logger = logging.getLogger(__name__)


def get_stack(request: Request) -> LoggingStack:
    return request.app.state.stack


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": message, "code": "auth_required"},
    )


def get_authenticated_user_id(authorization: str) -> str:
    """Verify the JWT with Supabase and return the user id.

    Raises HTTPException 401 if the token is invalid or missing.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise _unauthorized("Missing or invalid authorization header")

    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise _unauthorized("Empty bearer token")

    db = get_supabase_client()
    try:
        auth_response = db.auth.get_user(token)
    except Exception as exc:
        logger.warning("Auth token verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid or expired token", "code": "auth_invalid"},
        ) from exc

    if not auth_response or not auth_response.user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "User not found for token", "code": "auth_invalid"},
        )
    return auth_response.user.id


def get_active_profile(
    authorization: str = Header(default=""),
    x_pet_id: Optional[str] = Header(default=None),
) -> Optional[ActiveProfile]:
    """Owner from the token plus the selected pet.

    Returns None when no pet is selected; the write path reports that as
    "no active subject" rather than an auth failure.
    """
    user_id = get_authenticated_user_id(authorization)
    if not x_pet_id:
        return None

    result = (
        get_supabase_client()
        .table("pets")
        .select("id")
        .eq("id", x_pet_id)
        .eq("user_id", user_id)
        .maybe_single()
        .execute()
    )
    if result is None or not result.data:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Pet not found", "code": "pet_not_found"},
        )
    return ActiveProfile(user_id=user_id, pet_id=x_pet_id)
