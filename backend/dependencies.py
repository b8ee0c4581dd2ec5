"""
Boresha Reviews - Shared FastAPI Dependencies

Centralizes authentication dependencies and the pipeline component
getters used across routers. Tests swap components through
app.dependency_overrides.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth_manager import auth_manager, internal_key_matches
from database import get_async_db, get_user_by_email

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_async_db)
):
    """Verify JWT token and return current user. Raises 401 if invalid/missing."""
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = auth_manager.verify_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = await get_user_by_email(db, payload.get("sub"))
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")

    return {"id": user.id, "email": user.email, "role": user.role}


async def require_admin(current_user: dict = Depends(get_current_user)):
    """Current user, restricted to admins."""
    if current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user


async def require_internal_key(x_internal_key: Optional[str] = Header(None)):
    """Service-to-service calls carry the internal key, not a user token."""
    if not internal_key_matches(x_internal_key):
        logger.warning("Rejected internal call with missing or invalid X-Internal-Key")
        raise HTTPException(status_code=401, detail="Unauthorized - internal access only")
    return True


# ============== Pipeline components ==============

def get_orchestrator():
    from fetch_orchestrator import get_fetch_orchestrator
    return get_fetch_orchestrator()


def get_drainer():
    from enrichment import get_enrichment_drainer
    return get_enrichment_drainer()


def get_tasks():
    from services.task_service import get_task_service
    return get_task_service()


def get_review_store():
    from database import AsyncSessionLocal
    from review_store import ReviewStoreWriter
    return ReviewStoreWriter(AsyncSessionLocal)


def get_session_factory():
    from database import AsyncSessionLocal
    return AsyncSessionLocal


def get_zembra_source():
    from review_sources.zembra import ZembraSource
    return ZembraSource()


def get_zembra_plan() -> dict:
    """Zembra plan features: unlimited monitoring, else a per-sync review cap."""
    from constants import ZEMBRA_MAX_REVIEWS_PER_SYNC, ZEMBRA_UNLIMITED_REVIEWS
    return {"unlimited": ZEMBRA_UNLIMITED_REVIEWS, "size_limit": ZEMBRA_MAX_REVIEWS_PER_SYNC}
