"""LLM scoring of one client overview against one expert"""

import json
import logging
from typing import Any

from trainermatch.config import settings
from trainermatch.errors import ErrorKind, UpstreamServiceError
from trainermatch.schemas.matching import (
    Expert,
    MatchResult,
    ReasonsOnlyResult,
    ScoreOnlyResult,
)
from trainermatch.services.llm import LLMClient

logger = logging.getLogger(__name__)

SCORING_SYSTEM_PROMPT = "You are a fitness matchmaking expert. Respond only with valid JSON."


def _expert_profile(expert: Expert) -> str:
    lines = []
    if expert.specialization:
        lines.append(f"Specialization: {expert.specialization}")
    if expert.years_of_experience not in (None, ""):
        lines.append(f"Experience: {expert.years_of_experience} years")
    if expert.certifications:
        lines.append(f"Certifications: {expert.certifications}")
    lines.append(f"Overview: {expert.overview}")
    return "\n".join(lines)


def build_score_prompt(overview: str, expert: Expert) -> str:
    return f"""Rate the compatibility between a client and a fitness expert on a scale of 0-100.

Client Profile:
{overview}

Expert Profile:
{_expert_profile(expert)}

Return only a JSON object with the match score:
{{
  "match_score": <number between 0-100>
}}"""


def build_reasons_prompt(overview: str, expert: Expert, score: int) -> str:
    return f"""This client and expert have a {score}% compatibility match. Provide exactly \
two brief reasons (one sentence each) why they would be a good match.

Client Profile:
{overview}

Expert Profile:
{_expert_profile(expert)}

Return your response in this exact JSON format:
{{
  "reason_1": "<first reason>",
  "reason_2": "<second reason>"
}}"""


def build_match_prompt(overview: str, expert: Expert) -> str:
    return f"""Analyze the compatibility between a client and a fitness expert.

Client Profile:
{overview}

Expert Profile:
{_expert_profile(expert)}

Rate their compatibility on a scale of 0-100 and provide exactly two brief reasons \
(one sentence each) for the score.

Return your response in this exact JSON format:
{{
  "match_score": <number between 0-100>,
  "reason_1": "<first reason>",
  "reason_2": "<second reason>"
}}"""


def _malformed(message: str, content: str) -> UpstreamServiceError:
    return UpstreamServiceError(
        ErrorKind.MALFORMED_RESPONSE,
        message,
        details={"content_preview": content[:200]},
    )


def parse_json_object(content: str) -> dict[str, Any]:
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, TypeError) as e:
        raise _malformed(f"Response is not valid JSON: {e}", content) from e
    if not isinstance(parsed, dict):
        raise _malformed("Response JSON is not an object", content)
    return parsed


def parse_score(data: dict[str, Any], content: str) -> int:
    """Extract a score in [0, 100]; anything else is a parse failure, never clamped"""
    value = data.get("match_score", data.get("score"))
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _malformed(f"Missing or non-numeric match_score: {value!r}", content)
    if not 0 <= value <= 100:
        raise _malformed(f"match_score out of range: {value}", content)
    return int(round(value))


def parse_reasons(data: dict[str, Any], content: str) -> tuple[str, str]:
    reasons = []
    for keys in (("reason_1", "reason1"), ("reason_2", "reason2")):
        value = next((data[k] for k in keys if k in data), None)
        if not isinstance(value, str) or not value.strip():
            raise _malformed(f"Missing or empty {keys[0]}", content)
        reasons.append(value.strip())
    return reasons[0], reasons[1]


class MatchScorer:
    """Scores (overview, expert) pairs, optionally split into score and reasons phases"""

    def __init__(self, llm: LLMClient, temperature: float | None = None):
        self.llm = llm
        self.temperature = settings.scoring_temperature if temperature is None else temperature

    async def _ask(self, prompt: str, max_tokens: int) -> tuple[dict[str, Any], str]:
        content = await self.llm.complete(
            SCORING_SYSTEM_PROMPT,
            prompt,
            temperature=self.temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )
        return parse_json_object(content), content

    async def score_only(self, overview: str, expert: Expert) -> ScoreOnlyResult:
        """Cheapest call: numeric score only"""
        data, content = await self._ask(
            build_score_prompt(overview, expert), settings.score_max_tokens
        )
        score = parse_score(data, content)
        logger.debug(f"Expert {expert.id}: score {score}")
        return ScoreOnlyResult(expert_id=expert.id, match_score=score)

    async def reasons_only(self, overview: str, expert: Expert, score: int) -> ReasonsOnlyResult:
        """Two justification sentences for an already known score"""
        data, content = await self._ask(
            build_reasons_prompt(overview, expert, score), settings.reasons_max_tokens
        )
        reason_1, reason_2 = parse_reasons(data, content)
        return ReasonsOnlyResult(expert_id=expert.id, reason_1=reason_1, reason_2=reason_2)

    async def score_and_reasons(self, overview: str, expert: Expert) -> MatchResult:
        """Combined single call"""
        data, content = await self._ask(
            build_match_prompt(overview, expert), settings.match_max_tokens
        )
        score = parse_score(data, content)
        reason_1, reason_2 = parse_reasons(data, content)
        return MatchResult(
            expert_id=expert.id,
            match_score=score,
            reason_1=reason_1,
            reason_2=reason_2,
            expert=expert,
        )
