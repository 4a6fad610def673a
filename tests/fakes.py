"""Test doubles shared across the suite"""

import asyncio
import json
import re
from collections.abc import Callable

from trainermatch.schemas.matching import Expert

EXPERT_MARKER = re.compile(r"EXPERT-(\d+)")


def expert_id_from_prompt(prompt: str) -> int:
    return int(EXPERT_MARKER.search(prompt).group(1))


def default_score(expert_id: int) -> int:
    """Deterministic, distinct scores so rankings are predictable"""
    return (expert_id * 37) % 100


class FakeLLM:
    """
    Scriptable stand-in for LLMClient.

    ``complete`` answers overview prompts with ``overview_text`` and scoring
    prompts (json_mode) through ``score_handler`` / ``reasons_handler``.
    ``stream`` yields ``stream_tokens`` and records whether it was closed;
    each call first raises the next of ``stream_open_errors``, if any.
    """

    def __init__(self):
        self.overview_text = "Intermediate client focused on strength and weight loss."
        self.stream_tokens = ["Intermediate ", "client ", "focused ", "on ", "strength."]
        self.stream_error: Exception | None = None
        self.stream_error_after: int | None = None
        self.stream_delay = 0.0
        self.stream_open_errors: list[Exception] = []
        self.score_handler: Callable[[int], object] = lambda expert_id: {
            "match_score": default_score(expert_id)
        }
        self.reasons_handler: Callable[[int], object] = lambda expert_id: {
            "reason_1": f"Reason one for {expert_id}.",
            "reason_2": f"Reason two for {expert_id}.",
        }
        self.complete_calls: list[dict] = []
        self.stream_calls = 0
        self.stream_closed = False
        self.stream_yielded = 0
        self.is_configured = True

    async def complete(self, system, prompt, *, temperature, max_tokens, json_mode=False):
        self.complete_calls.append({"prompt": prompt, "json_mode": json_mode})
        await asyncio.sleep(0)
        if not json_mode:
            return self.overview_text

        expert_id = expert_id_from_prompt(prompt)
        handler = self.reasons_handler if '"reason_1"' in prompt and '"match_score"' not in prompt else self.score_handler
        result = handler(expert_id)
        if isinstance(result, Exception):
            raise result
        return result if isinstance(result, str) else json.dumps(result)

    async def stream(self, system, prompt, *, temperature, max_tokens):
        self.stream_calls += 1
        try:
            if self.stream_open_errors:
                raise self.stream_open_errors.pop(0)
            for i, token in enumerate(self.stream_tokens):
                if self.stream_error is not None and i == self.stream_error_after:
                    raise self.stream_error
                await asyncio.sleep(self.stream_delay)
                self.stream_yielded += 1
                yield token
        finally:
            self.stream_closed = True

    def score_calls(self) -> list[dict]:
        return [c for c in self.complete_calls if c["json_mode"] and '"match_score"' in c["prompt"]]

    def reasons_calls(self) -> list[dict]:
        return [
            c for c in self.complete_calls
            if c["json_mode"] and '"match_score"' not in c["prompt"]
        ]

    async def close(self):
        pass


def make_experts(count: int) -> list[Expert]:
    return [
        Expert(
            id=i,
            name=f"Trainer {i}",
            specialization="Strength Training",
            certifications="NASM-CPT",
            years_of_experience=i,
            overview=f"EXPERT-{i} coaches strength and conditioning.",
        )
        for i in range(1, count + 1)
    ]
