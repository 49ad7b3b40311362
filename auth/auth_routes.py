"""
FastAPI account endpoints.
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger

from auth.identity_provider import IdentityProvider
from auth.policy import AuthPolicy, Identity, require_identity
from documents.schemas import SignupRequest, SignupResponse
from storage.errors import PortalError

router = APIRouter(prefix="/api", tags=["auth"])


# ==================== HELPER FUNCTIONS ====================

def get_identity_provider(request: Request) -> IdentityProvider:
    return request.app.state.identity_provider


def get_auth_policy(request: Request) -> AuthPolicy:
    return request.app.state.auth_policy


# ==================== SIGNUP ====================

@router.post("/signup", response_model=SignupResponse)
async def signup(
    data: SignupRequest,
    identity_provider: IdentityProvider = Depends(get_identity_provider),
):
    """Create an account in the external identity provider."""
    if not data.username or not data.password or not data.email:
        raise HTTPException(
            status_code=400, detail="Username, password, and email are required"
        )

    try:
        await asyncio.to_thread(
            identity_provider.create_user, data.username, data.password, data.email
        )
        logger.info(f"Created user {data.username}")
        return SignupResponse(username=data.username)
    except PortalError:
        raise
    except Exception as e:
        logger.error(f"Error processing signup: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ==================== ADMIN CHECK ====================

@router.get("/check-admin")
async def check_admin(
    username: str = Query(None),
    identity: Identity = Depends(require_identity),
    policy: AuthPolicy = Depends(get_auth_policy),
):
    """Report whether ``username`` is in the admin group."""
    if not username:
        raise HTTPException(status_code=400, detail="Username is required")

    return {"isAdmin": policy.is_admin(identity, username)}
