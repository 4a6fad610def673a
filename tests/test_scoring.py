"""Tests for match scoring and response parsing"""

import pytest

from trainermatch.errors import ErrorKind, UpstreamServiceError
from trainermatch.services.scoring import (
    MatchScorer,
    build_reasons_prompt,
    build_score_prompt,
    parse_reasons,
    parse_score,
)

OVERVIEW = "Intermediate client focused on strength."


class TestParsing:
    """Strict response parsing"""

    @pytest.mark.parametrize("value, expected", [(0, 0), (100, 100), (72.6, 73), (55.0, 55)])
    def test_valid_scores(self, value, expected):
        assert parse_score({"match_score": value}, "") == expected

    def test_score_alias(self):
        assert parse_score({"score": 40}, "") == 40

    @pytest.mark.parametrize("value", [-1, 101, "80", None, True, [80]])
    def test_invalid_scores_are_malformed(self, value):
        with pytest.raises(UpstreamServiceError) as exc_info:
            parse_score({"match_score": value}, "raw")
        assert exc_info.value.kind == ErrorKind.MALFORMED_RESPONSE
        assert exc_info.value.retryable is True

    def test_reason_aliases(self):
        assert parse_reasons({"reason1": " A. ", "reason2": "B."}, "") == ("A.", "B.")

    def test_blank_reason_is_malformed(self):
        with pytest.raises(UpstreamServiceError):
            parse_reasons({"reason_1": "A.", "reason_2": "  "}, "")


class TestPrompts:
    """Prompt construction"""

    def test_score_prompt_includes_expert_profile(self, experts):
        prompt = build_score_prompt(OVERVIEW, experts[0])
        assert OVERVIEW in prompt
        assert "Specialization: Strength Training" in prompt
        assert "Certifications: NASM-CPT" in prompt
        assert "EXPERT-1" in prompt

    def test_reasons_prompt_mentions_score(self, experts):
        assert "72% compatibility" in build_reasons_prompt(OVERVIEW, experts[0], 72)


class TestMatchScorer:
    """Scorer calls"""

    @pytest.mark.asyncio
    async def test_score_only(self, fake_llm, experts):
        fake_llm.score_handler = lambda expert_id: {"match_score": 81}
        result = await MatchScorer(fake_llm).score_only(OVERVIEW, experts[2])

        assert result.expert_id == 3
        assert result.match_score == 81
        assert fake_llm.complete_calls[0]["json_mode"] is True

    @pytest.mark.asyncio
    async def test_reasons_only(self, fake_llm, experts):
        result = await MatchScorer(fake_llm).reasons_only(OVERVIEW, experts[1], 64)
        assert result.reason_1 == "Reason one for 2."
        assert result.reason_2 == "Reason two for 2."

    @pytest.mark.asyncio
    async def test_score_and_reasons(self, fake_llm, experts):
        fake_llm.score_handler = lambda expert_id: {
            "match_score": 90,
            "reason_1": "Great fit.",
            "reason_2": "Right experience.",
        }
        result = await MatchScorer(fake_llm).score_and_reasons(OVERVIEW, experts[0])

        assert result.match_score == 90
        assert (result.reason_1, result.reason_2) == ("Great fit.", "Right experience.")
        assert result.expert == experts[0]

    @pytest.mark.asyncio
    async def test_invalid_json(self, fake_llm, experts):
        fake_llm.score_handler = lambda expert_id: "not json"
        with pytest.raises(UpstreamServiceError) as exc_info:
            await MatchScorer(fake_llm).score_only(OVERVIEW, experts[0])
        assert exc_info.value.kind == ErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_out_of_range_score_is_not_clamped(self, fake_llm, experts):
        fake_llm.score_handler = lambda expert_id: {"match_score": 150}
        with pytest.raises(UpstreamServiceError):
            await MatchScorer(fake_llm).score_only(OVERVIEW, experts[0])

    @pytest.mark.asyncio
    async def test_upstream_errors_propagate(self, fake_llm, experts):
        error = UpstreamServiceError(ErrorKind.RATE_LIMITED, "slow down")
        fake_llm.score_handler = lambda expert_id: error
        with pytest.raises(UpstreamServiceError) as exc_info:
            await MatchScorer(fake_llm).score_only(OVERVIEW, experts[0])
        assert exc_info.value is error
