"""Snapshot model + payload decoding.

Wire format (GSI, JSON):
  {"provider": {...}, "map": {...}, "round": {...}, "player": {...},
   "allplayers": {"<steamid>": {...}}, "bomb": {...},
   "grenades": {"<id>": {...}}, "phase_countdowns": {...},
   "auth": {"token": "..."}}

Only `provider` is required. Every other section may be missing; a missing
section decodes to None (or an empty mapping for allplayers/grenades).
A section or value that is present but has the wrong shape is an error.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Mapping, TypeVar

T = TypeVar("T")


class MalformedPayload(Exception):
    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


def decode_body(body: bytes | str) -> dict[str, Any]:
    try:
        obj = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPayload("$", f"invalid json: {e}")
    if not isinstance(obj, dict):
        raise MalformedPayload("$", "payload must be object")
    return obj


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _section(data: dict[str, Any], key: str, path: str = "") -> dict[str, Any] | None:
    v = data.get(key)
    if v is None:
        return None
    if not isinstance(v, dict):
        raise MalformedPayload(_join(path, key), "expected object")
    return v


def _str(data: dict[str, Any], key: str, path: str) -> str | None:
    v = data.get(key)
    if v is None:
        return None
    if isinstance(v, (dict, list)):
        raise MalformedPayload(_join(path, key), "expected string")
    return str(v)


def _int(data: dict[str, Any], key: str, path: str) -> int | None:
    v = data.get(key)
    if v is None:
        return None
    # bool is an int subclass; GSI never sends one where a count is expected.
    if isinstance(v, bool):
        raise MalformedPayload(_join(path, key), "expected integer")
    try:
        return int(v)
    except (TypeError, ValueError):
        raise MalformedPayload(_join(path, key), "expected integer")


def _num(data: dict[str, Any], key: str, path: str) -> float | None:
    v = data.get(key)
    if v is None:
        return None
    if isinstance(v, bool):
        raise MalformedPayload(_join(path, key), "expected number")
    try:
        return float(v)
    except (TypeError, ValueError):
        raise MalformedPayload(_join(path, key), "expected number")


def _bool(data: dict[str, Any], key: str, path: str) -> bool | None:
    v = data.get(key)
    if v is None:
        return None
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return bool(v)
    if isinstance(v, str) and v.strip().lower() in ("1", "true", "0", "false"):
        return v.strip().lower() in ("1", "true")
    raise MalformedPayload(_join(path, key), "expected boolean")


def _vec(data: dict[str, Any], key: str, path: str) -> tuple[float, float, float] | None:
    # GSI sends vectors as "x, y, z".
    v = data.get(key)
    if v is None:
        return None
    parts = v.split(",") if isinstance(v, str) else v
    if not isinstance(parts, list) or len(parts) != 3:
        raise MalformedPayload(_join(path, key), "expected 'x, y, z'")
    try:
        x, y, z = (float(p) for p in parts)
    except (TypeError, ValueError):
        raise MalformedPayload(_join(path, key), "expected 'x, y, z'")
    return (x, y, z)


def _carry(cur: T | None, prev: T | None) -> T | None:
    """Fill the None fields of `cur` from `prev`."""
    if cur is None:
        return prev
    if prev is None:
        return cur
    known = {f.name: getattr(prev, f.name) for f in fields(cur) if getattr(cur, f.name) is None}
    return replace(cur, **known) if known else cur


@dataclass(frozen=True)
class Provider:
    name: str
    appid: int
    version: int | None = None
    steamid: str | None = None
    timestamp: int | None = None

    @classmethod
    def parse(cls, data: dict[str, Any] | None) -> "Provider":
        if data is None:
            raise MalformedPayload("provider", "required")
        name = _str(data, "name", "provider")
        if not name:
            raise MalformedPayload("provider.name", "required")
        appid = _int(data, "appid", "provider")
        if appid is None:
            raise MalformedPayload("provider.appid", "required")
        return cls(
            name=name,
            appid=appid,
            version=_int(data, "version", "provider"),
            steamid=_str(data, "steamid", "provider"),
            timestamp=_int(data, "timestamp", "provider"),
        )


@dataclass(frozen=True)
class MapState:
    name: str | None = None
    mode: str | None = None
    phase: str | None = None  # warmup | live | intermission | gameover
    round: int | None = None
    ct_score: int | None = None
    t_score: int | None = None
    round_wins: Mapping[int, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "round_wins", MappingProxyType(dict(self.round_wins)))

    @property
    def last_win_reason(self) -> str | None:
        if not self.round_wins:
            return None
        return self.round_wins[max(self.round_wins)]

    @classmethod
    def parse(cls, data: dict[str, Any], path: str = "map") -> "MapState":
        ct = _section(data, "team_ct", path) or {}
        t = _section(data, "team_t", path) or {}
        wins_raw = _section(data, "round_wins", path) or {}
        wins: dict[int, str] = {}
        for k, v in wins_raw.items():
            try:
                wins[int(k)] = str(v)
            except ValueError:
                raise MalformedPayload(f"{path}.round_wins.{k}", "expected round number key")
        return cls(
            name=_str(data, "name", path),
            mode=_str(data, "mode", path),
            phase=_str(data, "phase", path),
            round=_int(data, "round", path),
            ct_score=_int(ct, "score", f"{path}.team_ct"),
            t_score=_int(t, "score", f"{path}.team_t"),
            round_wins=wins,
        )


@dataclass(frozen=True)
class RoundState:
    phase: str | None = None  # freezetime | live | over
    bomb: str | None = None  # planted | defused | exploded
    win_team: str | None = None

    @classmethod
    def parse(cls, data: dict[str, Any], path: str = "round") -> "RoundState":
        return cls(
            phase=_str(data, "phase", path),
            bomb=_str(data, "bomb", path),
            win_team=_str(data, "win_team", path),
        )


@dataclass(frozen=True)
class Weapon:
    slot: str
    name: str
    type: str | None = None
    state: str | None = None  # active | holstered | reloading
    ammo_clip: int | None = None
    ammo_reserve: int | None = None

    @classmethod
    def parse(cls, slot: str, data: dict[str, Any], path: str) -> "Weapon":
        name = _str(data, "name", path)
        if not name:
            raise MalformedPayload(f"{path}.name", "required")
        return cls(
            slot=slot,
            name=name,
            type=_str(data, "type", path),
            state=_str(data, "state", path),
            ammo_clip=_int(data, "ammo_clip", path),
            ammo_reserve=_int(data, "ammo_reserve", path),
        )


@dataclass(frozen=True)
class PlayerState:
    steamid: str
    name: str | None = None
    team: str | None = None
    activity: str | None = None
    observer_slot: int | None = None

    # player.state
    health: int | None = None
    armor: int | None = None
    helmet: bool | None = None
    flashed: int | None = None
    smoked: int | None = None
    burning: int | None = None
    money: int | None = None
    round_kills: int | None = None
    equip_value: int | None = None

    # player.weapons; None when the section was not sent.
    weapons: tuple[Weapon, ...] | None = None

    # player.match_stats
    kills: int | None = None
    assists: int | None = None
    deaths: int | None = None
    mvps: int | None = None
    score: int | None = None

    position: tuple[float, float, float] | None = None

    @property
    def weapon_names(self) -> tuple[str, ...] | None:
        if self.weapons is None:
            return None
        return tuple(sorted(w.name for w in self.weapons))

    @property
    def active_weapon(self) -> Weapon | None:
        for w in self.weapons or ():
            if w.state == "active":
                return w
        return None

    @classmethod
    def parse(cls, data: dict[str, Any], path: str, steamid: str | None = None) -> "PlayerState":
        sid = _str(data, "steamid", path) or steamid
        if not sid:
            raise MalformedPayload(f"{path}.steamid", "required")

        state = _section(data, "state", path) or {}
        sp = f"{path}.state"
        stats = _section(data, "match_stats", path) or {}
        mp = f"{path}.match_stats"

        weapons = None
        weapons_raw = _section(data, "weapons", path)
        if weapons_raw is not None:
            ws = []
            # weapon_0, weapon_1, ... ; keep slot order stable.
            for slot in sorted(weapons_raw, key=_slot_key):
                w = weapons_raw[slot]
                wp = f"{path}.weapons.{slot}"
                if not isinstance(w, dict):
                    raise MalformedPayload(wp, "expected object")
                ws.append(Weapon.parse(slot, w, wp))
            weapons = tuple(ws)

        return cls(
            steamid=sid,
            name=_str(data, "name", path),
            team=_str(data, "team", path),
            activity=_str(data, "activity", path),
            observer_slot=_int(data, "observer_slot", path),
            health=_int(state, "health", sp),
            armor=_int(state, "armor", sp),
            helmet=_bool(state, "helmet", sp),
            flashed=_int(state, "flashed", sp),
            smoked=_int(state, "smoked", sp),
            burning=_int(state, "burning", sp),
            money=_int(state, "money", sp),
            round_kills=_int(state, "round_kills", sp),
            equip_value=_int(state, "equip_value", sp),
            weapons=weapons,
            kills=_int(stats, "kills", mp),
            assists=_int(stats, "assists", mp),
            deaths=_int(stats, "deaths", mp),
            mvps=_int(stats, "mvps", mp),
            score=_int(stats, "score", mp),
            position=_vec(data, "position", path),
        )


def _slot_key(slot: str) -> tuple[int, str]:
    _, _, n = slot.rpartition("_")
    return (int(n), slot) if n.isdigit() else (1 << 30, slot)


@dataclass(frozen=True)
class BombState:
    state: str | None = None  # carried | dropped | planting | planted | defusing | defused | exploded
    position: tuple[float, float, float] | None = None
    player: str | None = None
    countdown: float | None = None

    @classmethod
    def parse(cls, data: dict[str, Any], path: str = "bomb") -> "BombState":
        return cls(
            state=_str(data, "state", path),
            position=_vec(data, "position", path),
            player=_str(data, "player", path),
            countdown=_num(data, "countdown", path),
        )


@dataclass(frozen=True)
class Grenade:
    grenade_id: str
    type: str | None = None
    owner: str | None = None
    position: tuple[float, float, float] | None = None
    velocity: tuple[float, float, float] | None = None
    lifetime: float | None = None
    effecttime: float | None = None
    state: str = "active"  # active | exploded

    @classmethod
    def parse(cls, grenade_id: str, data: dict[str, Any], path: str) -> "Grenade":
        effecttime = _num(data, "effecttime", path)
        state = _str(data, "state", path)
        if state is None:
            # Smokes/molotovs report effect time once they have gone off.
            state = "exploded" if effecttime and effecttime > 0.0 else "active"
        return cls(
            grenade_id=grenade_id,
            type=_str(data, "type", path),
            owner=_str(data, "owner", path),
            position=_vec(data, "position", path),
            velocity=_vec(data, "velocity", path),
            lifetime=_num(data, "lifetime", path),
            effecttime=effecttime,
            state=state,
        )


@dataclass(frozen=True)
class PhaseCountdown:
    phase: str | None = None
    ends_in: float | None = None

    @classmethod
    def parse(cls, data: dict[str, Any], path: str = "phase_countdowns") -> "PhaseCountdown":
        return cls(phase=_str(data, "phase", path), ends_in=_num(data, "phase_ends_in", path))


@dataclass(frozen=True)
class Snapshot:
    provider: Provider
    map: MapState | None = None
    round: RoundState | None = None
    player: PlayerState | None = None
    all_players: Mapping[str, PlayerState] = field(default_factory=dict, hash=False)
    bomb: BombState | None = None
    grenades: Mapping[str, Grenade] = field(default_factory=dict, hash=False)
    phase_countdown: PhaseCountdown | None = None
    auth_token: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "all_players", MappingProxyType(dict(self.all_players)))
        object.__setattr__(self, "grenades", MappingProxyType(dict(self.grenades)))

    @property
    def timestamp(self) -> int | None:
        return self.provider.timestamp

    @property
    def bomb_state(self) -> str | None:
        if self.bomb is not None and self.bomb.state is not None:
            return self.bomb.state
        if self.round is not None:
            return self.round.bomb
        return None

    def players(self) -> dict[str, PlayerState]:
        """All known players keyed by steamid; the `player` section wins on overlap."""
        out = dict(self.all_players)
        if self.player is not None:
            out[self.player.steamid] = self.player
        return out

    def overlay(self, previous: "Snapshot | None") -> "Snapshot":
        """This snapshot with values it did not report carried over from `previous`.

        Used as the next baseline, so a field missing from one push still
        holds its last known value when the following push is diffed.
        allplayers and grenades keep the current key set; only the entries
        themselves are filled in.
        """
        if previous is None:
            return self
        before = previous.players()

        player = self.player
        if player is None:
            player = previous.player
        else:
            player = _carry(player, before.get(player.steamid))

        map_ = _carry(self.map, previous.map)
        if map_ is not None and not map_.round_wins and previous.map is not None and map_.name == previous.map.name:
            map_ = replace(map_, round_wins=previous.map.round_wins)

        # A new round phase invalidates the last round's bomb and winner.
        rnd = self.round
        if rnd is None or rnd.phase is None or previous.round is None or rnd.phase == previous.round.phase:
            rnd = _carry(rnd, previous.round)

        # The round section reports the bomb when the bomb section is absent.
        if self.bomb is None and self.round is not None and self.round.bomb is not None:
            bomb = None
        else:
            bomb = _carry(self.bomb, previous.bomb)

        return replace(
            self,
            provider=_carry(self.provider, previous.provider),
            map=map_,
            round=rnd,
            player=player,
            all_players={sid: _carry(p, before.get(sid)) for sid, p in self.all_players.items()},
            bomb=bomb,
            grenades={gid: _carry(g, previous.grenades.get(gid)) for gid, g in self.grenades.items()},
            phase_countdown=_carry(self.phase_countdown, previous.phase_countdown),
            auth_token=self.auth_token or previous.auth_token,
        )

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Snapshot":
        if not isinstance(data, dict):
            raise MalformedPayload("$", "payload must be object")

        provider = Provider.parse(_section(data, "provider"))

        map_raw = _section(data, "map")
        round_raw = _section(data, "round")
        player_raw = _section(data, "player")
        bomb_raw = _section(data, "bomb")
        pc_raw = _section(data, "phase_countdowns")
        auth_raw = _section(data, "auth") or {}

        all_players: dict[str, PlayerState] = {}
        for sid, p in (_section(data, "allplayers") or {}).items():
            path = f"allplayers.{sid}"
            if not isinstance(p, dict):
                raise MalformedPayload(path, "expected object")
            all_players[str(sid)] = PlayerState.parse(p, path, steamid=str(sid))

        grenades: dict[str, Grenade] = {}
        for gid, g in (_section(data, "grenades") or {}).items():
            path = f"grenades.{gid}"
            if not isinstance(g, dict):
                raise MalformedPayload(path, "expected object")
            grenades[str(gid)] = Grenade.parse(str(gid), g, path)

        return cls(
            provider=provider,
            map=MapState.parse(map_raw) if map_raw is not None else None,
            round=RoundState.parse(round_raw) if round_raw is not None else None,
            player=PlayerState.parse(player_raw, "player", steamid=provider.steamid) if player_raw is not None else None,
            all_players=all_players,
            bomb=BombState.parse(bomb_raw) if bomb_raw is not None else None,
            grenades=grenades,
            phase_countdown=PhaseCountdown.parse(pc_raw) if pc_raw is not None else None,
            auth_token=_str(auth_raw, "token", "auth"),
        )
