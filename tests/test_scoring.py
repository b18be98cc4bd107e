"""
Score engine tests
积分计算测试 - 纯函数部分和从数据库重算
"""

import random
from datetime import datetime

from hypothesis import HealthCheck, given, settings, strategies as st

from party_game.schemas.game import GameTeamRead, OutcomeRead, ParticipantRead, VoteRead
from party_game.services.scoring import compute_participant_results, compute_scores, correct_votes

NOW = datetime(2026, 1, 1)


def team(team_id, position):
    return GameTeamRead(id=team_id, game_id="g1", name=team_id.upper(), color_hex="#ef4444", position=position)


def participant(pid, team_id):
    return ParticipantRead(id=pid, game_id="g1", user_id=f"u-{pid}", nickname=pid, game_team_id=team_id)


def vote(pid, team_id, round_id="r1"):
    return VoteRead(id=f"v-{round_id}-{pid}", round_id=round_id, participant_id=pid, team_id=team_id, created_at=NOW)


def outcome(team_id, is_loser, points, round_id="r1"):
    return OutcomeRead(id=f"o-{round_id}-{team_id}", round_id=round_id, team_id=team_id,
                       is_loser=is_loser, challenge_points=points, created_at=NOW)


TEAMS = [team("a", 0), team("b", 1)]
PARTICIPANTS = [participant("a1", "a"), participant("a2", "a"), participant("b1", "b"), participant("b2", "b")]


class TestComputeScores:
    """队伍总分"""

    def test_credit_goes_to_the_voters_own_team(self):
        votes = [vote("a1", "b"), vote("b1", "b"), vote("b2", "b"), vote("a2", "a")]
        outcomes = [outcome("b", True, 0), outcome("a", False, 5)]

        scores = {s.team_id: s for s in compute_scores(votes, outcomes, PARTICIPANTS, teams=TEAMS)}

        assert scores["a"].vote_points == 3
        assert scores["a"].challenge_points == 5
        assert scores["a"].total_score == 8
        assert scores["b"].vote_points == 6
        assert scores["b"].total_score == 6

    def test_sorted_by_total_then_position(self):
        outcomes = [outcome("b", True, 4), outcome("a", False, 4)]
        scores = compute_scores([], outcomes, PARTICIPANTS, teams=TEAMS)
        assert [s.team_id for s in scores] == ["a", "b"]

        outcomes = [outcome("b", True, 7), outcome("a", False, 4)]
        scores = compute_scores([], outcomes, PARTICIPANTS, teams=TEAMS)
        assert [s.team_id for s in scores] == ["b", "a"]

    def test_teams_without_points_are_listed(self):
        scores = compute_scores([], [], PARTICIPANTS, teams=TEAMS)
        assert {s.team_id: s.total_score for s in scores} == {"a": 0, "b": 0}

    def test_voter_without_team_credits_nobody(self):
        participants = PARTICIPANTS + [participant("x", None)]
        scores = compute_scores([vote("x", "b")], [outcome("b", True, 0)], participants, teams=TEAMS)
        assert all(s.total_score == 0 for s in scores)

    def test_open_rounds_do_not_award_votes(self):
        votes = [vote("a1", "b", "r1"), vote("a1", "b", "r2")]
        outcomes = [outcome("b", True, 0, "r1"), outcome("b", True, 0, "r2")]

        scores = {s.team_id: s for s in compute_scores(
            votes, outcomes, PARTICIPANTS, teams=TEAMS, completed_round_ids={"r1"}
        )}
        assert scores["a"].vote_points == 3

    def test_open_rounds_do_not_award_challenge_points(self):
        outcomes = [outcome("a", False, 4, "r1"), outcome("a", False, 7, "r2")]
        scores = {s.team_id: s for s in compute_scores(
            [], outcomes, PARTICIPANTS, teams=TEAMS, completed_round_ids={"r1"}
        )}
        assert scores["a"].challenge_points == 4
        assert scores["a"].total_score == 4

    def test_several_losers_in_one_round(self):
        votes = [vote("a1", "a"), vote("b1", "b")]
        outcomes = [outcome("a", True, 0), outcome("b", True, 0)]
        scores = {s.team_id: s.total_score for s in compute_scores(votes, outcomes, PARTICIPANTS, teams=TEAMS)}
        assert scores == {"a": 3, "b": 3}

    def test_custom_reward(self):
        scores = {s.team_id: s.total_score for s in compute_scores(
            [vote("a1", "b")], [outcome("b", True, 0)], PARTICIPANTS, teams=TEAMS, reward=10
        )}
        assert scores["a"] == 10

    @given(
        st.lists(
            st.tuples(
                st.sampled_from(["a1", "a2", "b1", "b2"]),
                st.sampled_from(["a", "b"]),
                st.sampled_from(["r1", "r2", "r3"]),
            ),
            max_size=12,
            unique_by=lambda t: (t[0], t[2]),
        ),
        st.lists(
            st.tuples(st.sampled_from(["a", "b"]), st.booleans(), st.integers(0, 20), st.sampled_from(["r1", "r2", "r3"])),
            max_size=6,
            unique_by=lambda t: (t[0], t[3]),
        ),
        st.randoms(use_true_random=False),
    )
    @settings(suppress_health_check=[HealthCheck.too_slow], max_examples=50)
    def test_result_does_not_depend_on_row_order(self, vote_rows, outcome_rows, rng: random.Random):
        votes = [vote(p, t, r) for p, t, r in vote_rows]
        outcomes = [outcome(t, loser, pts, r) for t, loser, pts, r in outcome_rows]
        expected = compute_scores(votes, outcomes, PARTICIPANTS, teams=TEAMS)

        shuffled_votes, shuffled_outcomes = list(votes), list(outcomes)
        rng.shuffle(shuffled_votes)
        rng.shuffle(shuffled_outcomes)

        assert compute_scores(shuffled_votes, shuffled_outcomes, PARTICIPANTS, teams=TEAMS) == expected

    @given(st.lists(st.integers(0, 50), min_size=1, max_size=5))
    def test_challenge_points_are_summed(self, points):
        outcomes = [outcome("a", False, p, f"r{i}") for i, p in enumerate(points)]
        scores = {s.team_id: s.challenge_points for s in compute_scores([], outcomes, PARTICIPANTS, teams=TEAMS)}
        assert scores["a"] == sum(points)


class TestParticipantResults:
    """个人预测成绩"""

    def test_correct_predictions_counted(self):
        votes = [vote("a1", "b"), vote("b1", "a")]
        outcomes = [outcome("b", True, 0)]

        assert [v.participant_id for v in correct_votes(votes, outcomes)] == ["a1"]
        results = compute_participant_results(votes, outcomes, PARTICIPANTS)
        assert results[0].participant_id == "a1"
        assert results[0].correct_predictions == 1
        assert len(results) == 4


class TestScoreService:
    """从存储重算"""

    async def test_scores_follow_revealed_rounds(self, two_team_game, machine, actions, scores):
        game = two_team_game["game"]
        team_a, team_b = two_team_game["teams"]
        members = two_team_game["members"]

        await machine.start_round(game.id)
        for team in (team_a, team_b):
            from_team = members[team.id][0]
            await actions.toggle_lineup(game.id, team.id, from_team.id, True, user_id=from_team.user_id)
        await machine.open_voting(game.id)

        a1, a2 = members[team_a.id]
        b1, b2 = members[team_b.id]
        for voter, target in ((a1, team_b), (b1, team_b), (b2, team_b), (a2, team_a)):
            await actions.cast_vote(game.id, voter.user_id, target.id)

        await machine.lock_voting(game.id)
        await machine.set_outcome(game.id, team_b.id, is_loser=True, challenge_points=0)
        await machine.set_outcome(game.id, team_a.id, is_loser=False, challenge_points=5)

        # 揭晓前投票和挑战分都不计入
        before = {s.team_id: s.total_score for s in await scores.team_scores(game.id)}
        assert before == {team_a.id: 0, team_b.id: 0}

        await machine.reveal_results(game.id)
        after = {s.team_id: s.total_score for s in await scores.team_scores(game.id)}
        assert after == {team_a.id: 8, team_b.id: 6}

        history = await scores.round_history(game.id)
        assert len(history) == 1
        assert history[0].vote_count == 4
        assert history[0].round.losing_team_id == team_b.id
