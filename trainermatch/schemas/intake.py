"""Schemas for client intake data"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from trainermatch.errors import ValidationError


class ClientProfile(BaseModel):
    """Normalized intake questionnaire answers"""
    model_config = ConfigDict(frozen=True)

    training_experience: str = Field(min_length=1)
    goals: list[str] = Field(min_length=1)
    sessions_per_week: str = Field(min_length=1)
    chronic_diseases: list[str] = Field(default_factory=list)
    injuries: list[str] = Field(default_factory=list)
    weight_goal: str = Field(min_length=1)

    @field_validator('sessions_per_week', mode='before')
    @classmethod
    def coerce_sessions(cls, v):
        """Intake forms send either "3" or 3"""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('training_experience', 'sessions_per_week', 'weight_goal')
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('must not be blank')
        return v

    @field_validator('chronic_diseases', 'injuries', mode='before')
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v

    @classmethod
    def from_intake(cls, data: Mapping[str, Any]) -> "ClientProfile":
        """Build a profile from a raw intake mapping, raising the domain ValidationError"""
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise ValidationError(
                f"Invalid intake data: {', '.join(fields) or 'unknown fields'}",
                fields=fields,
            ) from e


class OverviewResponse(BaseModel):
    """Generated (or cached) client overview"""
    overview: str
    cached: bool


class WarmCacheRequest(BaseModel):
    """Request to pre-compute overview and matches for a profile"""
    client_data: ClientProfile


class WarmCacheResponse(BaseModel):
    success: bool
    overview: str
    cached: bool
