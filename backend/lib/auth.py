"""
Authentication: Bearer token validation through Supabase Auth
"""
import logging
from typing import Optional

from fastapi import HTTPException

from arabic_tutor_agent.conversation_context import UserLevel

logger = logging.getLogger("backend.auth")


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization[len("Bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return token


def authenticate(supabase, authorization: Optional[str]) -> dict:
    """
    Validate the token and return the learner.

    Returns:
        dict with id, email and level (profile level, beginner when unknown)

    Raises:
        HTTPException: 401 if the token is missing or rejected
    """
    token = bearer_token(authorization)

    try:
        user_response = supabase.auth.get_user(token)
    except Exception as e:
        logger.warning(f"⚠️ [Auth] Token validation failed: {e}")
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    if not user_response or not user_response.user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = user_response.user

    level = UserLevel.BEGINNER
    try:
        profile = supabase.table('profiles').select('level').eq('id', user.id).limit(1).execute()
        if profile.data:
            level = UserLevel.parse(profile.data[0].get('level'))
    except Exception as e:
        logger.warning(f"⚠️ [Auth] Could not load profile for {user.id}, assuming beginner: {e}")

    return {
        "id": user.id,
        "email": user.email,
        "level": level,
    }
