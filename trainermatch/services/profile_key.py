"""Stable content hashes for client profiles and overview texts"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

from trainermatch.schemas.intake import ClientProfile

SCALAR_FIELDS = ("training_experience", "sessions_per_week", "weight_goal")
SET_FIELDS = ("goals", "chronic_diseases", "injuries")


def _normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def _normalize_set(values: Iterable[Any] | None) -> list[str]:
    normalized = {_normalize_text(v) for v in (values or [])}
    normalized.discard("")
    return sorted(normalized)


def canonicalize_profile(profile: ClientProfile | Mapping[str, Any]) -> dict[str, Any]:
    """Project a profile onto the fields that identify it, in canonical form"""
    if isinstance(profile, ClientProfile):
        data = profile.model_dump()
    else:
        data = dict(profile)

    canonical: dict[str, Any] = {}
    for field in SCALAR_FIELDS:
        canonical[field] = _normalize_text(data.get(field))
    for field in SET_FIELDS:
        canonical[field] = _normalize_set(data.get(field))
    return canonical


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def derive_key(profile: ClientProfile | Mapping[str, Any]) -> str:
    """
    Derive the overview cache key for a profile.

    Casing, surrounding whitespace, list order and duplicate list items do
    not affect the key.
    """
    serialized = json.dumps(
        canonicalize_profile(profile),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return _digest(serialized)


def overview_hash(overview: str) -> str:
    """Key space for match caching: digest of the trimmed overview text"""
    return _digest(overview.strip())
