"""Pytest configuration and fixtures"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from trainermatch.api.matching import get_matching_service
from trainermatch.main import app
from trainermatch.schemas.intake import ClientProfile
from trainermatch.schemas.matching import Expert
from trainermatch.services.cache import ContentAddressedCache
from trainermatch.services.cache_store import InMemoryCacheStore
from trainermatch.services.matching import ExpertMatchingService
from trainermatch.services.orchestrator import BatchMatchOrchestrator
from trainermatch.services.overview import OverviewGenerator
from trainermatch.services.roster import StaticExpertRoster
from trainermatch.services.scoring import MatchScorer

from tests.fakes import FakeLLM, make_experts


@pytest.fixture
def intake_data() -> dict:
    return {
        "training_experience": "Intermediate",
        "goals": ["Build strength", "Lose weight"],
        "sessions_per_week": "3",
        "chronic_diseases": [],
        "injuries": ["Knee"],
        "weight_goal": "Lose 5kg",
    }


@pytest.fixture
def sample_profile(intake_data) -> ClientProfile:
    return ClientProfile.from_intake(intake_data)


@pytest.fixture
def experts() -> list[Expert]:
    return make_experts(10)


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def cache(store) -> ContentAddressedCache:
    return ContentAddressedCache(store)


@pytest.fixture
def roster(experts) -> StaticExpertRoster:
    return StaticExpertRoster(experts)


@pytest.fixture
def scorer(fake_llm) -> MatchScorer:
    return MatchScorer(fake_llm)


@pytest.fixture
def orchestrator(scorer, roster, cache) -> BatchMatchOrchestrator:
    return BatchMatchOrchestrator(
        scorer=scorer,
        roster=roster,
        cache=cache,
        retry_attempts=3,
        retry_base_delay=0,
        call_timeout=5,
    )


@pytest.fixture
def service(fake_llm, cache, scorer, roster, orchestrator) -> ExpertMatchingService:
    return ExpertMatchingService(
        cache=cache,
        generator=OverviewGenerator(fake_llm, retry_base_delay=0),
        scorer=scorer,
        roster=roster,
        orchestrator=orchestrator,
    )


@pytest_asyncio.fixture
async def client(service) -> AsyncGenerator[AsyncClient, None]:
    """Test client wired to the in-memory pipeline"""
    app.dependency_overrides[get_matching_service] = lambda: service
    app.state.matching_service = service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.matching_service
    await service.cancel_background()
