"""Snapshot diff -> ordered change events.

Groups are compared in a fixed order so higher-level changes come first:

  1. map (name/mode, phase, team scores)
  2. round phase
  3. bomb state
  4. per player, ascending steamid
  5. entity sets: removals, then additions, then grenade state

Only a known value changing to a different known value produces an event.
The exceptions are the keyed sets (allplayers, grenades), where a missing
key means the entity is gone, and the bomb, whose section appears only
while it is in play.
"""

from __future__ import annotations

from typing import Any

from gsi_server.game.events import Event, EventKind
from gsi_server.game.snapshot import PlayerState, Snapshot

# Flash intensity must rise by more than this to count as a new flash.
FLASH_THRESHOLD = 0


def _changed(old: Any, new: Any) -> bool:
    return old is not None and new is not None and old != new


class _Emitter:
    def __init__(self, current: Snapshot, client_id: str | None):
        self.ts = current.timestamp
        self.client_id = client_id
        self.out: list[Event] = []

    def emit(self, kind: EventKind, entity: str | None, old: Any, new: Any, **extra: Any) -> None:
        self.out.append(
            Event(kind=kind, entity=entity, old=old, new=new, timestamp=self.ts, client_id=self.client_id, extra=extra)
        )


def diff(baseline: Snapshot | None, current: Snapshot, *, client_id: str | None = None) -> list[Event]:
    em = _Emitter(current, client_id)
    if baseline is None:
        em.emit(EventKind.CLIENT_CONNECTED, None, None, current)
        return em.out

    _diff_map(em, baseline, current)
    _diff_round(em, baseline, current)
    _diff_bomb(em, baseline, current)
    _diff_players(em, baseline, current)
    _diff_sets(em, baseline, current)
    return em.out


def _diff_map(em: _Emitter, prev: Snapshot, cur: Snapshot) -> None:
    a, b = prev.map, cur.map
    if a is None or b is None:
        return
    if _changed(a.name, b.name) or _changed(a.mode, b.mode):
        em.emit(EventKind.MAP_CHANGED, None, (a.name, a.mode), (b.name, b.mode))
    if _changed(a.phase, b.phase):
        em.emit(EventKind.MAP_PHASE_CHANGED, None, a.phase, b.phase)
    if _changed(a.ct_score, b.ct_score):
        em.emit(EventKind.TEAM_SCORE_CHANGED, "CT", a.ct_score, b.ct_score)
    if _changed(a.t_score, b.t_score):
        em.emit(EventKind.TEAM_SCORE_CHANGED, "T", a.t_score, b.t_score)


def _diff_round(em: _Emitter, prev: Snapshot, cur: Snapshot) -> None:
    a, b = prev.round, cur.round
    if a is None or b is None or not _changed(a.phase, b.phase):
        return
    if b.phase == "over":
        reason = cur.map.last_win_reason if cur.map is not None else None
        em.emit(EventKind.ROUND_PHASE_CHANGED, None, a.phase, b.phase, win_team=b.win_team, win_reason=reason or b.win_team)
    else:
        em.emit(EventKind.ROUND_PHASE_CHANGED, None, a.phase, b.phase)


def _diff_bomb(em: _Emitter, prev: Snapshot, cur: Snapshot) -> None:
    old, new = prev.bomb_state, cur.bomb_state
    if new is None or old == new:
        return
    em.emit(EventKind.BOMB_STATE_CHANGED, None, old, new)


def _diff_players(em: _Emitter, prev: Snapshot, cur: Snapshot) -> None:
    if prev.player is not None and cur.player is not None:
        if prev.player.steamid != cur.player.steamid:
            em.emit(EventKind.OBSERVED_PLAYER_CHANGED, None, prev.player.steamid, cur.player.steamid)

    before, after = prev.players(), cur.players()
    for sid in sorted(before.keys() & after.keys()):
        _diff_player(em, sid, before[sid], after[sid])


def _diff_player(em: _Emitter, sid: str, a: PlayerState, b: PlayerState) -> None:
    died = _changed(a.health, b.health) and a.health > 0 and b.health == 0
    if _changed(a.health, b.health) and not died:
        em.emit(EventKind.PLAYER_HEALTH_CHANGED, sid, a.health, b.health)
    if _changed(a.armor, b.armor):
        em.emit(EventKind.PLAYER_ARMOR_CHANGED, sid, a.armor, b.armor)
    if died:
        em.emit(EventKind.PLAYER_DIED, sid, a.health, b.health)
    if _changed(a.flashed, b.flashed) and b.flashed - a.flashed > FLASH_THRESHOLD:
        em.emit(EventKind.PLAYER_FLASHED, sid, a.flashed, b.flashed)
    if _changed(a.weapon_names, b.weapon_names):
        em.emit(EventKind.PLAYER_WEAPONS_CHANGED, sid, a.weapon_names, b.weapon_names)
    if _changed(a.money, b.money):
        em.emit(EventKind.PLAYER_MONEY_CHANGED, sid, a.money, b.money)
    if _changed(a.team, b.team):
        em.emit(EventKind.PLAYER_TEAM_CHANGED, sid, a.team, b.team)


def _diff_sets(em: _Emitter, prev: Snapshot, cur: Snapshot) -> None:
    pa, pb = prev.all_players, cur.all_players
    ga, gb = prev.grenades, cur.grenades

    for sid in sorted(pa.keys() - pb.keys()):
        em.emit(EventKind.PLAYER_LEFT, sid, pa[sid], None)
    for gid in sorted(ga.keys() - gb.keys()):
        em.emit(EventKind.GRENADE_EXPIRED, gid, ga[gid], None)
    for sid in sorted(pb.keys() - pa.keys()):
        em.emit(EventKind.PLAYER_JOINED, sid, None, pb[sid])
    for gid in sorted(gb.keys() - ga.keys()):
        em.emit(EventKind.GRENADE_SPAWNED, gid, None, gb[gid])
    for gid in sorted(ga.keys() & gb.keys()):
        if ga[gid].state != gb[gid].state:
            em.emit(EventKind.GRENADE_STATE_CHANGED, gid, ga[gid].state, gb[gid].state)
