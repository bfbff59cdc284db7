"""
backend/oddsline/services/market_keys.py

Purpose:
    Canonical market vocabulary. Provider market identifiers arrive with
    exchange suffixes, casing drift and synonyms ("Moneyline", "H2H_Lay",
    "Asian Handicap"); everything downstream (merge, projection, settlement)
    works on the canonical key returned here.

Dependencies:
    - oddsline.models.wager
"""

from __future__ import annotations

import re
from typing import Any

from oddsline.models.wager import MarketFamily

_LAY_SUFFIX_RE = re.compile(r"(?:^|[_\s])lay$")
_SEPARATOR_RE = re.compile(r"[\s\-]+")
_UNDERSCORE_RUN_RE = re.compile(r"_+")

MARKET_ALIASES: dict[str, str] = {
    "moneyline": "h2h",
    "money_line": "h2h",
    "match_winner": "h2h",
    "head_to_head": "h2h",
    "1x2": "h2h",
    "handicap": "spreads",
    "asian_handicap": "spreads",
    "point_spread": "spreads",
    "spread": "spreads",
    "over_under": "totals",
    "points_total": "totals",
    "total": "totals",
    "btts": "both_teams_to_score",
    "outright": "outrights",
}

_FAMILY_BY_KEY: dict[str, MarketFamily] = {
    "h2h": MarketFamily.h2h,
    "h2h_3_way": MarketFamily.h2h,
    "spreads": MarketFamily.spreads,
    "alternate_spreads": MarketFamily.spreads,
    "totals": MarketFamily.totals,
    "alternate_totals": MarketFamily.totals,
}

# Display header + category for the canonical featured/additional markets.
MARKET_CATALOG: dict[str, tuple[str, str]] = {
    "h2h": ("Winner", "Featured"),
    "spreads": ("Handicap", "Featured"),
    "totals": ("Total", "Featured"),
    "outrights": ("Tournament Winner", "Featured"),
    "alternate_spreads": ("Alternate Handicap", "Additional"),
    "alternate_totals": ("Alternate Total", "Additional"),
    "both_teams_to_score": ("BTTS", "Additional"),
    "draw_no_bet": ("Draw No Bet", "Additional"),
    "h2h_3_way": ("3-Way Winner (Full Game)", "Additional"),
    "team_totals": ("Team Total", "Additional"),
    "alternate_team_totals": ("Alternate Team Total", "Additional"),
    "double_chance": ("Double Chance", "Additional"),
}


def normalize_market_key(raw: Any) -> str:
    """Map a provider market key onto the canonical vocabulary.

    Pure and total: never raises, non-string input yields ``""``.
    Unmapped keys pass through lower-cased with whitespace collapsed to ``_``.
    """
    if not isinstance(raw, str):
        return ""
    key = raw.strip().lower()
    key = _LAY_SUFFIX_RE.sub("", key).strip()
    key = _SEPARATOR_RE.sub("_", key)
    key = _UNDERSCORE_RUN_RE.sub("_", key).strip("_")
    return MARKET_ALIASES.get(key, key)


def market_family(raw: Any) -> MarketFamily:
    return _FAMILY_BY_KEY.get(normalize_market_key(raw), MarketFamily.other)


def market_label(raw: Any) -> dict[str, str]:
    """Display metadata for a market; unknown keys get a title-cased header."""
    key = normalize_market_key(raw)
    header, category = MARKET_CATALOG.get(
        key, (key.replace("_", " ").title(), "Other")
    )
    return {"key": key, "header": header, "category": category}
