"""Typed change events produced by the diff engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class EventKind(str, Enum):
    CLIENT_CONNECTED = "client_connected"

    # map
    MAP_CHANGED = "map_changed"
    MAP_PHASE_CHANGED = "map_phase_changed"
    TEAM_SCORE_CHANGED = "team_score_changed"

    # round / bomb
    ROUND_PHASE_CHANGED = "round_phase_changed"
    BOMB_STATE_CHANGED = "bomb_state_changed"

    # per player
    OBSERVED_PLAYER_CHANGED = "observed_player_changed"
    PLAYER_HEALTH_CHANGED = "player_health_changed"
    PLAYER_ARMOR_CHANGED = "player_armor_changed"
    PLAYER_DIED = "player_died"
    PLAYER_FLASHED = "player_flashed"
    PLAYER_WEAPONS_CHANGED = "player_weapons_changed"
    PLAYER_MONEY_CHANGED = "player_money_changed"
    PLAYER_TEAM_CHANGED = "player_team_changed"

    # entity sets
    PLAYER_LEFT = "player_left"
    GRENADE_EXPIRED = "grenade_expired"
    PLAYER_JOINED = "player_joined"
    GRENADE_SPAWNED = "grenade_spawned"
    GRENADE_STATE_CHANGED = "grenade_state_changed"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    entity: str | None
    old: Any
    new: Any
    timestamp: int | None
    client_id: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def summary(self) -> dict[str, Any]:
        """Flat, log-friendly view (entity values such as snapshots are not expanded)."""
        return {
            "kind": self.kind.value,
            "entity": self.entity,
            "timestamp": self.timestamp,
            "client": self.client_id,
        }
