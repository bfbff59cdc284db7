"""
backend/tests/test_selection_grammar.py

Purpose:
    Parsing free-text selections into typed (family, side, line) triples.
"""

from __future__ import annotations

import sys

import pytest

sys.path.insert(0, "backend")

from oddsline.services.selection_grammar import parse_selection


@pytest.mark.parametrize(
    "text,side",
    [("home", "home"), ("1", "home"), ("Away", "away"), ("2", "away"), ("draw", "draw"), ("X", "draw"), ("Tie", "draw")],
)
def test_winner_tokens(text, side):
    parsed = parse_selection("h2h", text, "Arsenal", "Chelsea")
    assert parsed is not None
    assert parsed.family == "h2h"
    assert parsed.side == side
    assert parsed.line is None


def test_winner_by_team_name_is_accent_and_case_insensitive():
    assert parse_selection("h2h", "bayern münchen", "Bayern Munchen", "Köln").side == "home"
    assert parse_selection("h2h", "KOLN to win", "Bayern Munchen", "Köln").side == "away"


def test_longer_team_name_wins_when_both_are_mentioned():
    parsed = parse_selection("h2h", "Manchester United", "Manchester United", "Manchester")
    assert parsed.side == "home"


def test_spread_selection_parses_signed_line():
    parsed = parse_selection("spreads", "away +1.5", "Arsenal", "Chelsea")
    assert (parsed.side, parsed.line) == ("away", 1.5)
    parsed = parse_selection("spreads", "Arsenal -0.5", "Arsenal", "Chelsea")
    assert (parsed.side, parsed.line) == ("home", -0.5)


@pytest.mark.parametrize(
    "text,side,line",
    [("Home-1.5", "home", -1.5), ("Away+0.5", "away", 0.5), ("Chelsea-2", "away", -2.0)],
)
def test_spread_sign_attached_to_side_word(text, side, line):
    parsed = parse_selection("spreads", text, "Arsenal", "Chelsea")
    assert (parsed.side, parsed.line) == (side, line)


def test_spread_ignores_digits_inside_team_names():
    parsed = parse_selection("spreads", "Schalke 04 +2", "Schalke 04", "Hertha")
    assert (parsed.side, parsed.line) == ("home", 2.0)


def test_totals_selection():
    parsed = parse_selection("totals", "Under 2.5", "Arsenal", "Chelsea")
    assert (parsed.family, parsed.side, parsed.line) == ("totals", "under", 2.5)
    assert parse_selection("totals", "over 210.5", "A", "B").line == 210.5


@pytest.mark.parametrize(
    "family,text",
    [
        ("h2h", "whoever"),
        ("h2h", ""),
        ("spreads", "draw +0.5"),
        ("spreads", "home"),
        ("totals", "over"),
        ("totals", "over under 2.5"),
        ("totals", "2.5"),
    ],
)
def test_unparseable_selections_return_none(family, text):
    assert parse_selection(family, text, "Arsenal", "Chelsea") is None


def test_unknown_family_reads_as_winner():
    parsed = parse_selection("other", "home", "Arsenal", "Chelsea")
    assert parsed.family == "h2h"
    assert parse_selection("something_else", "away", "A", "B").side == "away"
