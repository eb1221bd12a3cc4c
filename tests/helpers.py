from __future__ import annotations

import copy
from typing import Any

from gsi_server.game.snapshot import Snapshot

OBSERVER = "76561198000000001"


def player(
    steamid: str = OBSERVER,
    *,
    health: int | None = 100,
    armor: int | None = 100,
    flashed: int | None = 0,
    money: int | None = 800,
    team: str | None = "CT",
    weapons: tuple[str, ...] | None = ("weapon_knife", "weapon_hkp2000"),
    name: str | None = None,
) -> dict[str, Any]:
    state: dict[str, Any] = {}
    for key, val in (("health", health), ("armor", armor), ("flashed", flashed), ("money", money)):
        if val is not None:
            state[key] = val
    out: dict[str, Any] = {"steamid": steamid, "name": name or f"p{steamid[-2:]}", "state": state}
    if team is not None:
        out["team"] = team
    if weapons is not None:
        out["weapons"] = {
            f"weapon_{i}": {"name": w, "type": "Pistol", "state": "active" if i == 1 else "holstered"}
            for i, w in enumerate(weapons)
        }
    return out


def payload(*, token: str | None = "tok", timestamp: int = 1_700_000_000, **sections: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "provider": {
            "name": "Counter-Strike: Global Offensive",
            "appid": 730,
            "version": 13890,
            "steamid": OBSERVER,
            "timestamp": timestamp,
        },
    }
    if token is not None:
        data["auth"] = {"token": token}
    for key, val in sections.items():
        if val is not None:
            data[key] = copy.deepcopy(val)
    return data


def snap(**kwargs: Any) -> Snapshot:
    return Snapshot.parse(payload(**kwargs))


