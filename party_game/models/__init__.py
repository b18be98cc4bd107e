# Database models
from .game import Game, GameChallenge
from .team import Team, GameTeam
from .participant import Participant
from .round import GameRound, RoundLineup, RoundVote, RoundOutcome

__all__ = [
    "Game", "GameChallenge",
    "Team", "GameTeam",
    "Participant",
    "GameRound", "RoundLineup", "RoundVote", "RoundOutcome",
]
