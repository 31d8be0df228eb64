from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class EngineConfig:
    max_game_rounds: int = 20
    season_last_matchday: int = 38
    deadline_max_horizon: timedelta = timedelta(days=30)
    auto_assign_missing_picks: bool = False
    max_tickets_per_assignment: int = 10
    allow_late_tickets: bool = False

    @classmethod
    def from_mapping(cls, cfg) -> 'EngineConfig':
        """Build from a Flask config (or any mapping), falling back to defaults."""
        return cls(
            max_game_rounds=int(cfg.get('MAX_GAME_ROUNDS', 20)),
            season_last_matchday=int(cfg.get('SEASON_LAST_MATCHDAY', 38)),
            deadline_max_horizon=timedelta(days=int(cfg.get('DEADLINE_MAX_HORIZON_DAYS', 30))),
            auto_assign_missing_picks=bool(cfg.get('AUTO_ASSIGN_MISSING_PICKS', False)),
            max_tickets_per_assignment=int(cfg.get('MAX_TICKETS_PER_ASSIGNMENT', 10)),
            allow_late_tickets=bool(cfg.get('ALLOW_LATE_TICKETS', False)),
        )

    def final_round(self, start_round: int) -> int:
        """Last matchday a game started on ``start_round`` may play."""
        return min(start_round + self.max_game_rounds - 1, self.season_last_matchday)

    def capped_by_season(self, start_round: int) -> bool:
        return start_round + self.max_game_rounds - 1 > self.season_last_matchday
