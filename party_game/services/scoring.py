"""
Score engine
积分计算 - 每次都从投票、结果和参与者完整重算，从不保存累计值
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Set

from party_game.core.config import settings
from party_game.schemas.game import (
    GameTeamRead, OutcomeRead, ParticipantRead, RoundState, VoteRead,
)
from party_game.schemas.leaderboard import ParticipantResult, RoundHistoryEntry, TeamScore
from party_game.services.queries import GameReader

logger = logging.getLogger(__name__)


def losing_teams_by_round(
    outcomes: Iterable[OutcomeRead],
    completed_round_ids: Optional[Set[str]] = None,
) -> Dict[str, Set[str]]:
    """{round_id: {losing team ids}}, optionally limited to completed rounds"""
    losers = defaultdict(set)
    for outcome in outcomes:
        if not outcome.is_loser:
            continue
        if completed_round_ids is not None and outcome.round_id not in completed_round_ids:
            continue
        losers[outcome.round_id].add(outcome.team_id)
    return losers


def correct_votes(
    votes: Iterable[VoteRead],
    outcomes: Iterable[OutcomeRead],
    completed_round_ids: Optional[Set[str]] = None,
) -> List[VoteRead]:
    losers = losing_teams_by_round(outcomes, completed_round_ids)
    return [v for v in votes if v.team_id in losers.get(v.round_id, ())]


def compute_scores(
    votes: Sequence[VoteRead],
    outcomes: Sequence[OutcomeRead],
    participants: Sequence[ParticipantRead],
    teams: Optional[Sequence[GameTeamRead]] = None,
    completed_round_ids: Optional[Set[str]] = None,
    reward: Optional[int] = None,
) -> List[TeamScore]:
    """
    Team totals = correct-vote rewards + challenge points.

    A correct vote credits the voter's own team, not the team voted for;
    voters without a team credit nobody. Challenge points are summed over
    every outcome of the completed rounds (all outcomes when
    completed_round_ids is None). The result depends only on the input sets.
    """
    reward = settings.REWARD_PER_CORRECT_VOTE if reward is None else reward
    team_of = {p.id: p.game_team_id for p in participants}

    vote_points = defaultdict(int)
    for vote in correct_votes(votes, outcomes, completed_round_ids):
        team_id = team_of.get(vote.participant_id)
        if team_id:
            vote_points[team_id] += reward

    challenge_points = defaultdict(int)
    for outcome in outcomes:
        if completed_round_ids is not None and outcome.round_id not in completed_round_ids:
            continue
        challenge_points[outcome.team_id] += outcome.challenge_points

    team_info = {t.id: t for t in teams or []}
    team_ids = set(vote_points) | set(challenge_points) | set(team_info)

    scores = []
    for team_id in team_ids:
        team = team_info.get(team_id)
        scores.append(TeamScore(
            game_id=team.game_id if team else "",
            team_id=team_id,
            name=team.name if team else "",
            color_hex=team.color_hex if team else None,
            position=team.position if team else 0,
            vote_points=vote_points.get(team_id, 0),
            challenge_points=challenge_points.get(team_id, 0),
            total_score=vote_points.get(team_id, 0) + challenge_points.get(team_id, 0),
        ))

    scores.sort(key=lambda s: (-s.total_score, s.position, s.team_id))
    return scores


def compute_participant_results(
    votes: Sequence[VoteRead],
    outcomes: Sequence[OutcomeRead],
    participants: Sequence[ParticipantRead],
    completed_round_ids: Optional[Set[str]] = None,
) -> List[ParticipantResult]:
    """Personal leaderboard: one point per correct prediction"""
    correct = defaultdict(int)
    for vote in correct_votes(votes, outcomes, completed_round_ids):
        correct[vote.participant_id] += 1

    results = [
        ParticipantResult(
            game_id=p.game_id,
            participant_id=p.id,
            nickname=p.nickname,
            game_team_id=p.game_team_id,
            correct_predictions=correct.get(p.id, 0),
            total_score=correct.get(p.id, 0),
        )
        for p in participants
    ]
    results.sort(key=lambda r: (-r.total_score, r.nickname.lower(), r.participant_id))
    return results


class ScoreService:
    """Loads a game's rows and returns the derived projections"""

    def __init__(self, reader: GameReader):
        self.reader = reader

    async def _load(self, game_id: str):
        await self.reader.get_game(game_id)
        rounds = await self.reader.list_rounds(game_id)
        completed = {r.id for r in rounds if r.state == RoundState.RESOLUTION}
        votes = await self.reader.list_game_votes(game_id)
        outcomes = await self.reader.list_game_outcomes(game_id)
        participants = await self.reader.list_participants(game_id)
        return votes, outcomes, participants, completed

    async def team_scores(self, game_id: str) -> List[TeamScore]:
        votes, outcomes, participants, completed = await self._load(game_id)
        teams = await self.reader.list_teams(game_id)
        return compute_scores(
            votes, outcomes, participants,
            teams=teams,
            completed_round_ids=completed,
        )

    async def game_results(self, game_id: str) -> List[ParticipantResult]:
        votes, outcomes, participants, completed = await self._load(game_id)
        return compute_participant_results(votes, outcomes, participants, completed_round_ids=completed)

    async def round_history(self, game_id: str) -> List[RoundHistoryEntry]:
        """Rounds in play order with their outcomes and how many votes were cast"""
        await self.reader.get_game(game_id)
        rounds = await self.reader.list_rounds(game_id)
        votes = await self.reader.list_game_votes(game_id)
        outcomes = await self.reader.list_game_outcomes(game_id)

        vote_counts: Dict[str, int] = defaultdict(int)
        for vote in votes:
            vote_counts[vote.round_id] += 1
        outcomes_by_round: Dict[str, List[OutcomeRead]] = defaultdict(list)
        for outcome in outcomes:
            outcomes_by_round[outcome.round_id].append(outcome)

        return [
            RoundHistoryEntry(
                round=r,
                outcomes=outcomes_by_round.get(r.id, []),
                vote_count=vote_counts.get(r.id, 0),
            )
            for r in rounds
        ]
