"""Profile management and peer discovery."""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from app.adapters.base import PersistenceGateway, RecordKind
from app.core.exceptions import ErrorCode, InvalidArgumentException, NotFoundException
from app.schemas.records import UserProfile, utcnow
from app.schemas.user import ProfileUpdateRequest
from app.services.connection_service import validate_user_id
from app.services.scoring import PeerMatch, rank_peers

logger = logging.getLogger(__name__)


def normalize_skills(skills: Iterable[str]) -> List[str]:
    """Trim, drop blanks and de-duplicate, keeping first occurrence order."""
    seen = set()
    result = []
    for skill in skills:
        skill = skill.strip()
        if skill and skill not in seen:
            seen.add(skill)
            result.append(skill)
    return result


class UserService:
    """Service for profile reads/writes and ranked peer lists."""

    def __init__(self, gateway: PersistenceGateway, clock: Callable = utcnow):
        self.gateway = gateway
        self.clock = clock

    async def get_profile(self, user_id: str) -> UserProfile:
        profile = await self.gateway.get_by_id(RecordKind.USERS, validate_user_id(user_id))
        if profile is None:
            raise NotFoundException("UserProfile", user_id, code=ErrorCode.USER_NOT_FOUND)
        return profile

    async def upsert_profile(
        self,
        user_id: str,
        update: Union[ProfileUpdateRequest, Dict[str, Any]]
    ) -> UserProfile:
        """Create the profile, or conditionally update the fields that were sent."""
        user_id = validate_user_id(user_id)
        if isinstance(update, dict):
            update = ProfileUpdateRequest.model_validate(update)
        fields = update.model_dump(exclude_unset=True, exclude_none=True)
        for key in ('skills_offered', 'skills_needed'):
            if key in fields:
                fields[key] = normalize_skills(fields[key])

        now = self.clock()
        existing = await self.gateway.get_by_id(RecordKind.USERS, user_id)
        if existing is None:
            profile = UserProfile(id=user_id, created_at=now, updated_at=now, **fields)
            stored = await self.gateway.put(RecordKind.USERS, user_id, profile, only_if_absent=True)
            logger.info(f"Created profile for {user_id} (complete={stored.is_complete})")
            return stored

        fields['updated_at'] = now
        stored = await self.gateway.update(
            RecordKind.USERS, user_id, fields, expected_version=existing.version
        )
        logger.info(f"Updated profile for {user_id}: {sorted(k for k in fields if k != 'updated_at')}")
        return stored

    async def find_peers(self, user_id: str, limit: Optional[int] = None) -> List[PeerMatch]:
        """Rank every other complete profile against the user's own."""
        if limit is not None and limit < 1:
            raise InvalidArgumentException("limit must be positive", field="limit")
        profile = await self.get_profile(user_id)
        if not profile.is_complete:
            raise InvalidArgumentException(
                "Complete your profile (major) before finding peers",
                field="major",
                code=ErrorCode.PROFILE_INCOMPLETE
            )
        candidates = await self.gateway.list_all(RecordKind.USERS)
        peers = rank_peers(profile, candidates, limit=limit)
        logger.debug(f"Ranked {len(peers)} peers for {user_id}")
        return peers
