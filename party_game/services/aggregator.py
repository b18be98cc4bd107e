"""
Vote & lineup aggregation
投票统计和出场阵容就绪判断 - 纯函数，输入都是只读模型
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from party_game.schemas.game import (
    ChallengeRead, GameTeamRead, LineupReadiness, LineupRead, ParticipantRead,
    TeamReadiness, VoteRead, VoteTally,
)


def required_count(challenge: Optional[ChallengeRead]) -> Optional[int]:
    """Players each team must field; None means any non-zero count"""
    if challenge is None:
        return None
    return challenge.participants_per_team


def challenge_for_sequence(challenges: Sequence[ChallengeRead], sequence: int) -> Optional[ChallengeRead]:
    """Challenges rotate: round N plays challenges[N mod len]"""
    if not challenges:
        return None
    ordered = sorted(challenges, key=lambda c: c.position)
    return ordered[sequence % len(ordered)]


def team_lineup_ready(selected_count: int, required: Optional[int]) -> bool:
    if required is not None:
        return selected_count == required
    return selected_count > 0


def can_add_to_lineup(selected_count: int, required: Optional[int]) -> bool:
    if required:
        return selected_count < required
    return True


def _members_by_team(participants: Iterable[ParticipantRead]) -> Dict[str, List[ParticipantRead]]:
    members = defaultdict(list)
    for participant in participants:
        if participant.game_team_id:
            members[participant.game_team_id].append(participant)
    return members


def lineup_readiness(
    teams: Sequence[GameTeamRead],
    participants: Sequence[ParticipantRead],
    lineups: Sequence[LineupRead],
    required: Optional[int],
) -> LineupReadiness:
    """Per-team readiness plus the game-wide gate for opening votes"""
    members = _members_by_team(participants)
    selected = defaultdict(int)
    for entry in lineups:
        selected[entry.team_id] += 1

    result = []
    for team in sorted(teams, key=lambda t: t.position):
        member_count = len(members.get(team.id, []))
        selected_count = selected.get(team.id, 0)
        result.append(TeamReadiness(
            team_id=team.id,
            is_active=team.is_active,
            member_count=member_count,
            selected_count=selected_count,
            required=required,
            has_leader=team.leader_participant_id is not None,
            ready=member_count > 0 and team_lineup_ready(selected_count, required),
        ))

    active = [r for r in result if r.is_active]
    ready = bool(active) and all(r.ready for r in active)
    return LineupReadiness(teams=result, ready=ready)


def team_setup_ready(teams: Sequence[GameTeamRead], participants: Sequence[ParticipantRead]) -> bool:
    """Every active team has members and a leader"""
    members = _members_by_team(participants)
    active = [t for t in teams if t.is_active]
    return bool(active) and all(
        members.get(t.id) and t.leader_participant_id for t in active
    )


def vote_tally(teams: Sequence[GameTeamRead], votes: Sequence[VoteRead]) -> List[VoteTally]:
    """Votes per predicted loser, in team display order"""
    voters = defaultdict(list)
    for vote in votes:
        voters[vote.team_id].append(vote.participant_id)

    total = len(votes)
    denominator = max(total, 1)
    tallies = []
    for team in sorted(teams, key=lambda t: t.position):
        count = len(voters.get(team.id, []))
        tallies.append(VoteTally(
            team_id=team.id,
            count=count,
            percentage=int(count * 100 / denominator + 0.5),
            voter_ids=voters.get(team.id, []),
        ))
    return tallies


def pending_votes(participants: Sequence[ParticipantRead], votes: Sequence[VoteRead]) -> int:
    return max(len(participants) - len(votes), 0)


def lineup_summary(
    teams: Sequence[GameTeamRead],
    participants: Sequence[ParticipantRead],
    lineups: Sequence[LineupRead],
) -> str:
    """Snapshot such as `Red: Ann, Bob · Blue: Cy` stored when voting opens"""
    nicknames = {p.id: p.nickname for p in participants}
    selected = defaultdict(list)
    for entry in lineups:
        selected[entry.team_id].append(nicknames.get(entry.participant_id, "?"))

    parts = []
    for team in sorted(teams, key=lambda t: t.position):
        if not team.is_active or not selected.get(team.id):
            continue
        parts.append(f"{team.name}: {', '.join(selected[team.id])}")
    return " · ".join(parts)
