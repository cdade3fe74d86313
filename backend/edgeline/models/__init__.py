from edgeline.models.base import Base
from edgeline.models.clv_record import ClvRecord
from edgeline.models.edge import Edge
from edgeline.models.game import Game, GameResult
from edgeline.models.odds_tick import OddsTick
from edgeline.models.rating_snapshot import RatingSnapshot
from edgeline.models.sync_progress import SyncProgress
from edgeline.models.team import Team, TeamAlias, TeamNameMapping, UnmatchedTeamName

__all__ = [
    "Base",
    "ClvRecord",
    "Edge",
    "Game",
    "GameResult",
    "OddsTick",
    "RatingSnapshot",
    "SyncProgress",
    "Team",
    "TeamAlias",
    "TeamNameMapping",
    "UnmatchedTeamName",
]
