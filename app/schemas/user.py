"""
Profile and peer-discovery schemas for request/response validation.
"""
import html
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.records import UserProfile
from app.services.scoring import PeerMatch

# Constants for validation
MAX_SKILLS = 50
MAX_SKILL_LENGTH = 80
MAX_NAME_LENGTH = 120


def sanitize_html(text: str) -> str:
    """Escape HTML characters to prevent XSS attacks."""
    if text is None:
        return text
    return html.escape(str(text), quote=True)


class ProfileUpdateRequest(BaseModel):
    """Schema for creating or updating a skill profile. Omitted fields are left unchanged."""
    name: Optional[str] = Field(None, max_length=MAX_NAME_LENGTH, description="Display name")
    email: Optional[str] = Field(None, max_length=254, description="Contact email")
    major: Optional[str] = Field(None, max_length=MAX_NAME_LENGTH, description="Field of study")
    college_name: Optional[str] = Field(None, max_length=MAX_NAME_LENGTH, description="College or university")
    skills_offered: Optional[List[str]] = Field(None, max_length=MAX_SKILLS, description="Skills you can teach")
    skills_needed: Optional[List[str]] = Field(None, max_length=MAX_SKILLS, description="Skills you want to learn")

    @field_validator('name', 'major', 'college_name')
    @classmethod
    def sanitize_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return sanitize_html(v.strip())

    @field_validator('skills_offered', 'skills_needed')
    @classmethod
    def validate_skills(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        for skill in v:
            if len(skill) > MAX_SKILL_LENGTH:
                raise ValueError(f"Skill names are limited to {MAX_SKILL_LENGTH} characters")
        return [sanitize_html(skill) for skill in v]


class ProfileResponse(BaseModel):
    """Schema for a user profile response."""
    user_id: str
    name: str
    email: str
    major: str
    college_name: str
    skills_offered: List[str]
    skills_needed: List[str]
    is_complete: bool = Field(..., description="False until a major is set; incomplete profiles are not matched")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, profile: UserProfile) -> "ProfileResponse":
        return cls(
            user_id=profile.id,
            name=profile.name,
            email=profile.email,
            major=profile.major,
            college_name=profile.college_name,
            skills_offered=profile.skills_offered,
            skills_needed=profile.skills_needed,
            is_complete=profile.is_complete,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


class PeerResponse(BaseModel):
    """A ranked peer."""
    user_id: str
    name: str
    major: str
    college_name: str
    skills_offered: List[str]
    skills_needed: List[str]
    score: int = Field(..., description="Raw compatibility score")
    match_percentage: int = Field(..., ge=0, le=100, description="Score clipped to 0-100")

    @classmethod
    def from_match(cls, match: PeerMatch) -> "PeerResponse":
        profile = match.profile
        return cls(
            user_id=profile.id,
            name=profile.name,
            major=profile.major,
            college_name=profile.college_name,
            skills_offered=profile.skills_offered,
            skills_needed=profile.skills_needed,
            score=match.score,
            match_percentage=match.percentage,
        )


class PeerListResponse(BaseModel):
    """Ranked peers for a user, best match first."""
    user_id: str
    total: int
    peers: List[PeerResponse]
