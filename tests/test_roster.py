"""Tests for expert roster sources"""

import json
from pathlib import Path

import pytest

from trainermatch.errors import RosterError
from trainermatch.services.roster import JsonFileRoster, StaticExpertRoster, parse_experts

SAMPLE_ROSTER = Path(__file__).resolve().parent.parent / "data" / "experts.json"


@pytest.mark.asyncio
async def test_bundled_roster_loads():
    experts = await JsonFileRoster(SAMPLE_ROSTER).list_experts()
    assert len(experts) >= 5
    assert [e.id for e in experts] == sorted(e.id for e in experts)
    assert experts[0].rating is not None


@pytest.mark.asyncio
async def test_json_object_with_experts_key(tmp_path):
    path = tmp_path / "roster.json"
    path.write_text(json.dumps({"experts": [{"id": 7, "name": "Sam", "overview": "Yoga"}]}))

    experts = await JsonFileRoster(path).list_experts()
    assert experts[0].id == 7
    assert experts[0].overview == "Yoga"


@pytest.mark.asyncio
async def test_missing_file_is_roster_error(tmp_path):
    with pytest.raises(RosterError):
        await JsonFileRoster(tmp_path / "missing.json").list_experts()


@pytest.mark.asyncio
async def test_invalid_json_is_roster_error(tmp_path):
    path = tmp_path / "roster.json"
    path.write_text("[{")
    with pytest.raises(RosterError):
        await JsonFileRoster(path).list_experts()


def test_invalid_record_is_roster_error():
    with pytest.raises(RosterError):
        parse_experts([{"name": "No id"}])


@pytest.mark.asyncio
async def test_static_roster_returns_copy(experts):
    roster = StaticExpertRoster(experts)
    listed = await roster.list_experts()
    listed.pop()
    assert len(await roster.list_experts()) == 10
