"""Schemas for expert matching system"""

from typing import Any

from pydantic import BaseModel, Field


class Expert(BaseModel):
    """Read-only roster record for one trainer"""
    id: int
    name: str = ""
    specialization: str = ""
    certifications: str = ""
    years_of_experience: int | str | None = None
    overview: str = ""
    rating: float | None = None
    monthly_budget: str | None = None
    availability: str | None = None
    cooperation: str | None = None


class ScoreOnlyResult(BaseModel):
    """Numeric score for one (overview, expert) pair"""
    expert_id: int
    match_score: int = Field(ge=0, le=100)


class ReasonsOnlyResult(BaseModel):
    """Two short justifications for an already known score"""
    expert_id: int
    reason_1: str
    reason_2: str


class MatchResult(BaseModel):
    """Merged match result for one expert"""
    expert_id: int
    match_score: int = Field(ge=0, le=100)
    reason_1: str = ""
    reason_2: str = ""
    expert: Expert | None = Field(default=None, exclude=True)
    degraded: bool = Field(default=False, exclude=True)

    def event_payload(self) -> dict[str, Any]:
        """Fields sent with a match-score event"""
        return {
            "expert_id": self.expert_id,
            "match_score": self.match_score,
            "reason_1": self.reason_1,
            "reason_2": self.reason_2,
        }


class MatchingRequest(BaseModel):
    """Request for expert matching against a client overview"""
    overview: str
    force_refresh: bool = Field(default=False)


class MatchingResponse(BaseModel):
    """Response containing ranked matches"""
    overview_hash: str
    matches: list[MatchResult]
    cached: bool
    phase: str
    total_experts: int
    failed_expert_ids: list[int] = Field(default_factory=list)
    processing_time_ms: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class CacheStatsResponse(BaseModel):
    """Hit/miss bookkeeping per cache namespace"""
    overview: dict[str, int]
    matches: dict[str, int]
