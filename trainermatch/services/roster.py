"""Expert roster sources"""

import abc
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trainermatch.db.models import ExpertRecord
from trainermatch.errors import RosterError
from trainermatch.schemas.matching import Expert

logger = logging.getLogger(__name__)


class ExpertRoster(abc.ABC):
    """Read-only provider of the experts to score"""

    @abc.abstractmethod
    async def list_experts(self) -> list[Expert]:
        """Return the full roster in a stable order; raise RosterError on failure"""


class StaticExpertRoster(ExpertRoster):
    def __init__(self, experts: list[Expert] | None = None):
        self.experts = list(experts or [])

    async def list_experts(self) -> list[Expert]:
        return list(self.experts)


def parse_experts(records: list[dict[str, Any]]) -> list[Expert]:
    """Build Expert models from raw records, accepting the table's column names"""
    experts = []
    for record in records:
        data = dict(record)
        if "client_ratings" in data and "rating" not in data:
            data["rating"] = data.pop("client_ratings")
        try:
            experts.append(Expert.model_validate(data))
        except PydanticValidationError as e:
            raise RosterError(f"Invalid expert record {record.get('id')!r}: {e}") from e
    return experts


class JsonFileRoster(ExpertRoster):
    """Roster loaded from a JSON array on disk, re-read on every call"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def list_experts(self) -> list[Expert]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RosterError(f"Failed to read roster file {self.path}: {e}") from e
        if isinstance(raw, dict):
            raw = raw.get("experts", [])
        if not isinstance(raw, list):
            raise RosterError(f"Roster file {self.path} must contain a list of experts")
        return parse_experts(raw)


class SQLExpertRoster(ExpertRoster):
    """Roster read from the experts table"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_experts(self) -> list[Expert]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(ExpertRecord).order_by(ExpertRecord.id))
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load expert roster: {e}")
            raise RosterError(f"Failed to load expert roster: {e}") from e

        return [
            Expert(
                id=row.id,
                name=row.name,
                specialization=row.specialization or "",
                certifications=row.certifications or "",
                years_of_experience=row.years_of_experience,
                overview=row.overview or "",
                rating=row.client_ratings,
                monthly_budget=row.monthly_budget,
                availability=row.availability,
                cooperation=row.cooperation,
            )
            for row in rows
        ]
