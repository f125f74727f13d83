"""
Profile and peer-discovery routes.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_user_service
from app.middleware.auth import get_acting_user_id, require_same_user
from app.schemas.user import PeerListResponse, PeerResponse, ProfileResponse, ProfileUpdateRequest
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

MAX_PEERS = 100


@router.get("/{user_id}/profile", response_model=ProfileResponse)
async def get_profile(
    user_id: str,
    acting_user_id: str = Depends(get_acting_user_id),
    user_service: UserService = Depends(get_user_service)
):
    """Get a user's profile. Any authenticated user may view it."""
    profile = await user_service.get_profile(user_id)
    return ProfileResponse.from_record(profile)


@router.put("/{user_id}/profile", response_model=ProfileResponse)
async def upsert_profile(
    user_id: str,
    request: ProfileUpdateRequest,
    acting_user_id: str = Depends(get_acting_user_id),
    user_service: UserService = Depends(get_user_service)
):
    """Create or update the caller's own profile."""
    require_same_user(user_id, acting_user_id)
    profile = await user_service.upsert_profile(user_id, request)
    return ProfileResponse.from_record(profile)


@router.get("/{user_id}/peers", response_model=PeerListResponse)
async def find_peers(
    user_id: str,
    limit: Optional[int] = Query(None, ge=1, le=MAX_PEERS),
    acting_user_id: str = Depends(get_acting_user_id),
    user_service: UserService = Depends(get_user_service)
):
    """Rank other students by compatibility with the caller, best first."""
    require_same_user(user_id, acting_user_id)
    peers = await user_service.find_peers(user_id, limit=limit)
    return PeerListResponse(
        user_id=user_id,
        total=len(peers),
        peers=[PeerResponse.from_match(peer) for peer in peers]
    )
