#!/usr/bin/env python3
"""Load an expert roster JSON file into the experts table"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from sqlalchemy.dialects.postgresql import insert as pg_insert

from trainermatch.db.database import AsyncSessionLocal, engine, init_db
from trainermatch.db.models import ExpertRecord
from trainermatch.errors import RosterError
from trainermatch.services.roster import JsonFileRoster

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_ROSTER = Path(__file__).resolve().parent.parent / "data" / "experts.json"


async def seed_experts(path: Path) -> int:
    """Upsert every expert from ``path``; returns the number of rows written"""
    experts = await JsonFileRoster(path).list_experts()
    if not experts:
        logger.warning(f"No experts found in {path}")
        return 0

    rows = [
        {
            "id": expert.id,
            "name": expert.name,
            "specialization": expert.specialization,
            "certifications": expert.certifications,
            "years_of_experience": (
                None if expert.years_of_experience is None else str(expert.years_of_experience)
            ),
            "overview": expert.overview,
            "client_ratings": expert.rating,
            "monthly_budget": expert.monthly_budget,
            "availability": expert.availability,
            "cooperation": expert.cooperation,
        }
        for expert in experts
    ]
    stmt = pg_insert(ExpertRecord).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=[ExpertRecord.id],
        set_={column: stmt.excluded[column] for column in rows[0] if column != "id"},
    )

    async with AsyncSessionLocal() as session:
        await session.execute(stmt)
        await session.commit()

    logger.info(f"Seeded {len(rows)} experts from {path}")
    return len(rows)


async def main(path: Path) -> bool:
    if not await init_db():
        logger.error("Database is not configured or unreachable; set DATABASE_URL")
        return False
    try:
        await seed_experts(path)
        return True
    except RosterError as e:
        logger.error(f"Could not read roster: {e}")
        return False
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", nargs="?", type=Path, default=DEFAULT_ROSTER)
    args = parser.parse_args()
    success = asyncio.run(main(args.path))
    sys.exit(0 if success else 1)
