"""
backend/oddsline/utils/team_names.py

Purpose:
    Team-name comparison helpers shared by selection parsing, score extraction
    and the settlement team-pair fallback. Comparison is case- and
    accent-insensitive; no fuzzy token heuristics.
"""

from __future__ import annotations

import re
import unicodedata


def normalize_team_name(name: str) -> str:
    """Lowercase, accent-free, whitespace-collapsed form of a team name."""
    normalized = unicodedata.normalize("NFKD", str(name or ""))
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch)).lower()
    return " ".join(normalized.split())


def same_team(name_a: str, name_b: str) -> bool:
    a = normalize_team_name(name_a)
    return bool(a) and a == normalize_team_name(name_b)


def exact_name_pattern(name: str) -> dict[str, str]:
    """Mongo filter value matching ``name`` exactly, case-insensitive."""
    return {"$regex": f"^{re.escape(str(name or '').strip())}$", "$options": "i"}
