"""
backend/oddsline/database.py

Purpose:
    MongoDB connection bootstrap and index management for the odds pipeline
    collections (odds fan-out docs, mirrored matches, wagers, results, ledger).

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - oddsline.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure

from oddsline.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("oddsline.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Odds (one full fan-out doc per upstream event) ----

    await db.odds.create_index("event_id", unique=True)
    await db.odds.create_index([("sport_key", 1), ("commence_time", 1)])
    await db.odds.create_index([("last_fetched", -1)])

    # ---- Matches (mirrored from odds, sparse external id cross-reference) ----

    try:
        await db.matches.create_index("external_id", unique=True, sparse=True)
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.warning("Skipped unique matches.external_id index due to duplicate data: %s", exc)
        await db.matches.create_index("external_id", name="external_id_lookup", sparse=True)
    # Lifecycle sweep: status + start window
    await db.matches.create_index([("status", 1), ("start_time", 1)])
    await db.matches.create_index([("sport_key", 1), ("status", 1)])
    await db.matches.create_index([("home_team", 1), ("away_team", 1)])

    # ---- Wagers ----

    await db.wagers.create_index([("match_id", 1), ("status", 1)])
    await db.wagers.create_index([("user_id", 1), ("status", 1)])
    await db.wagers.create_index([("status", 1), ("home_team", 1), ("away_team", 1)])
    await db.wagers.create_index("settled_at", sparse=True)

    # ---- Completed results (scores surface) ----

    await db.completed_results.create_index("event_id", unique=True)
    await db.completed_results.create_index([("completed", 1), ("last_update", -1)])

    # ---- Balance ledger ----

    await db.ledger_transactions.create_index("reference", unique=True)
    await db.ledger_transactions.create_index([("user_id", 1), ("created_at", -1)])
