"""Balance ledger: credits winning payouts to a user's balance.

The settlement engine only sees the ``BalanceLedger`` protocol. The Mongo
implementation journals every credit under a unique reference before touching
the balance, so a repeated credit for the same wager is a no-op.
"""

from __future__ import annotations

import logging
from typing import Protocol

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import oddsline.database as _db
from oddsline.utils import utcnow

logger = logging.getLogger("oddsline.ledger_service")


class BalanceLedger(Protocol):
    async def credit_payout(
        self, user_id: str, amount: float, *, reference: str, description: str = "",
    ) -> bool: ...


def _user_filter(user_id: str) -> dict:
    if ObjectId.is_valid(user_id):
        return {"_id": ObjectId(user_id)}
    return {"_id": user_id}


class MongoBalanceLedger:
    async def credit_payout(
        self, user_id: str, amount: float, *, reference: str, description: str = "",
    ) -> bool:
        """Credit ``amount`` once per ``reference``. Returns False for a repeat."""
        if amount <= 0:
            return False
        now = utcnow()
        try:
            await _db.db.ledger_transactions.insert_one({
                "reference": reference,
                "user_id": user_id,
                "type": "payout",
                "amount": round(float(amount), 2),
                "description": description,
                "created_at": now,
            })
        except DuplicateKeyError:
            logger.info("Payout %s already credited; skipping", reference)
            return False

        result = await _db.db.users.update_one(
            _user_filter(user_id),
            {"$inc": {"balance": round(float(amount), 2)}, "$set": {"updated_at": now}},
        )
        if result.matched_count == 0:
            logger.error("User not found for payout credit: %s (reference=%s)", user_id, reference)
        return True


balance_ledger = MongoBalanceLedger()
