from __future__ import annotations

from typing import Any

import pytest

from helpers import OBSERVER, player


@pytest.fixture
def live_round() -> dict[str, Any]:
    return {
        "map": {
            "mode": "competitive",
            "name": "de_mirage",
            "phase": "live",
            "round": 3,
            "team_ct": {"score": 2},
            "team_t": {"score": 1},
        },
        "round": {"phase": "live"},
        "player": player(),
        "allplayers": {
            OBSERVER: player(),
            "76561198000000002": player("76561198000000002", team="T"),
        },
    }
