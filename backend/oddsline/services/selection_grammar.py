"""
backend/oddsline/services/selection_grammar.py

Purpose:
    Grammar for free-text wager selections, applied once when a wager is
    built so settlement works on a typed (family, side, line) triple:

        winner  :=  "home" | "1" | "away" | "2" | "draw" | "x" | "tie" | <team name>
        spread  :=  <side> <signed number>          e.g. "Home +1.5", "Chelsea -0.5"
        total   :=  ("over" | "under") <number>     e.g. "over 2.5", "Under 210.5"

    Side keywords win over team names; when the text mentions both teams the
    longer (more specific) name decides. Team names are removed before line
    parsing so digits inside names ("Schalke 04") are not read as lines.

Dependencies:
    - oddsline.models.wager
    - oddsline.utils.team_names
"""

from __future__ import annotations

import re

from oddsline.models.wager import MarketFamily, Side, WagerSelection
from oddsline.utils.team_names import normalize_team_name

# A sign glued to a word ("Home-1.5") still belongs to the number.
_SIGNED_NUMBER_RE = re.compile(r"(?<![\d.])[-+]?\d+(?:\.\d+)?")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_WORD_RE = re.compile(r"[a-z]+")

_HOME_WORDS = {"home"}
_AWAY_WORDS = {"away"}
_DRAW_WORDS = {"draw", "tie"}
_HOME_EXACT = {"1", "home"}
_AWAY_EXACT = {"2", "away"}
_DRAW_EXACT = {"x", "draw", "tie"}


def _team_side(text: str, home_team: str, away_team: str) -> Side | None:
    home = normalize_team_name(home_team)
    away = normalize_team_name(away_team)
    candidates = [
        (len(name), side)
        for name, side in ((home, Side.home), (away, Side.away))
        if name and name in text
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda item: item[0], reverse=True)
    if len(candidates) == 2 and candidates[0][0] == candidates[1][0]:
        return None
    return candidates[0][1]


def parse_side(text: str, home_team: str = "", away_team: str = "", *, allow_draw: bool = True) -> Side | None:
    normalized = normalize_team_name(text)
    if not normalized:
        return None
    if normalized in _HOME_EXACT:
        return Side.home
    if normalized in _AWAY_EXACT:
        return Side.away
    if normalized in _DRAW_EXACT:
        return Side.draw if allow_draw else None

    words = set(_WORD_RE.findall(normalized))
    flagged = [
        side
        for side, vocab in ((Side.home, _HOME_WORDS), (Side.away, _AWAY_WORDS), (Side.draw, _DRAW_WORDS))
        if words & vocab
    ]
    if len(flagged) == 1:
        side = flagged[0]
        if side == Side.draw and not allow_draw:
            return None
        return side
    if len(flagged) > 1:
        return None
    return _team_side(normalized, home_team, away_team)


def _strip_team_names(text: str, home_team: str, away_team: str) -> str:
    for name in sorted((normalize_team_name(home_team), normalize_team_name(away_team)), key=len, reverse=True):
        if name:
            text = text.replace(name, " ")
    return text


def parse_selection(
    family: MarketFamily | str,
    text: str,
    home_team: str = "",
    away_team: str = "",
) -> WagerSelection | None:
    """Parse ``text`` for ``family``; None when it does not fit the grammar.

    Markets outside the three settled families are read as winner selections.
    """
    normalized = normalize_team_name(text)
    if not normalized:
        return None
    try:
        family = MarketFamily(family)
    except ValueError:
        family = MarketFamily.other

    if family == MarketFamily.totals:
        words = set(_WORD_RE.findall(normalized))
        if "over" in words and "under" not in words:
            side = Side.over
        elif "under" in words and "over" not in words:
            side = Side.under
        else:
            return None
        number = _NUMBER_RE.search(_strip_team_names(normalized, home_team, away_team))
        if number is None:
            return None
        return WagerSelection(family=MarketFamily.totals, side=side, line=float(number.group(0)))

    if family == MarketFamily.spreads:
        remainder = _strip_team_names(normalized, home_team, away_team)
        side = parse_side(normalized, home_team, away_team, allow_draw=False)
        numbers = _SIGNED_NUMBER_RE.findall(remainder)
        if side is None or not numbers:
            return None
        return WagerSelection(family=MarketFamily.spreads, side=side, line=float(numbers[-1]))

    side = parse_side(normalized, home_team, away_team, allow_draw=True)
    if side is None:
        return None
    return WagerSelection(family=MarketFamily.h2h, side=side)
