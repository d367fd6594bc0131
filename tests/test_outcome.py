"""Tests for GameOutcome validation and the winning-pick policy."""

import pytest

from gamenight.core.outcome import (
    OUTCOME_DRAW,
    OUTCOME_INDIVIDUAL,
    OUTCOME_NO_WINNER,
    OUTCOME_TEAM,
    GameOutcome,
    Participant,
    is_winning_pick,
)

TEAMS = (
    Participant(1, "Red"),
    Participant(2, "Red"),
    Participant(3, "Blue"),
    Participant(4, "Blue"),
)


def test_kinds():
    solo = (Participant(1), Participant(2))
    assert GameOutcome(solo, winner_member_id=1).kind == OUTCOME_INDIVIDUAL
    assert GameOutcome(TEAMS, winner_team_name="Blue").kind == OUTCOME_TEAM
    assert GameOutcome(solo, is_draw=True).kind == OUTCOME_DRAW
    assert GameOutcome(solo).kind == OUTCOME_NO_WINNER


def test_teams_grouping_in_roster_order():
    assert GameOutcome(TEAMS).teams() == {"Red": (1, 2), "Blue": (3, 4)}


def test_team_winner_matches_case_insensitively():
    outcome = GameOutcome(TEAMS, winner_team_name="  blue ")
    assert outcome.winning_member_ids() == frozenset({3, 4})


@pytest.mark.parametrize("kwargs", [
    {"winner_member_id": 9},                            # not on roster
    {"winner_team_name": "Green"},                      # no such team
    {"winner_member_id": 1, "winner_team_name": "Red"},
    {"winner_member_id": 1, "is_draw": True},
    {"winner_member_id": 1},                            # team game needs a team winner
])
def test_invalid_outcomes(kwargs):
    with pytest.raises(ValueError):
        GameOutcome(TEAMS, **kwargs)


def test_team_names_group_case_insensitively():
    roster = (Participant(1, "Red"), Participant(2, " red "), Participant(3, "Blue"))
    outcome = GameOutcome(roster, winner_team_name="RED")
    assert outcome.teams() == {"Red": (1, 2), "Blue": (3,)}
    assert outcome.team_of(2) == "Red"
    assert outcome.winning_member_ids() == frozenset({1, 2})


def test_single_team_roster_allows_member_winner():
    roster = (Participant(1, "Red"), Participant(2, "Red"), Participant(3))
    assert GameOutcome(roster, winner_member_id=3).kind == OUTCOME_INDIVIDUAL


def test_duplicate_roster_entry_rejected():
    with pytest.raises(ValueError):
        GameOutcome((Participant(1), Participant(1)), winner_member_id=1)


class TestWinningPick:
    def test_individual(self):
        outcome = GameOutcome((Participant(1), Participant(2)), winner_member_id=2)
        assert is_winning_pick(outcome, 2)
        assert not is_winning_pick(outcome, 1)

    def test_any_member_of_winning_team(self):
        outcome = GameOutcome(TEAMS, winner_team_name="Red")
        assert is_winning_pick(outcome, 1)
        assert is_winning_pick(outcome, 2)
        assert not is_winning_pick(outcome, 3)

    def test_draw_and_no_winner_have_no_winning_picks(self):
        solo = (Participant(1), Participant(2))
        for outcome in (GameOutcome(solo, is_draw=True), GameOutcome(solo)):
            assert not is_winning_pick(outcome, 1)
            assert not is_winning_pick(outcome, 2)
