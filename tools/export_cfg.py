"""Write the game-side config that points GSI pushes at this server.

The game reads every `gamestate_integration_*.cfg` in its cfg folder.

Example:
  python tools/export_cfg.py --cfg-dir "<steam>/csgo/cfg" --name practice --port 3000 --token hunter2
"""

from __future__ import annotations

import argparse
import os

DEFAULT_SECTIONS = (
    "provider",
    "map",
    "round",
    "player_id",
    "player_state",
    "player_weapons",
    "player_match_stats",
    "allplayers_id",
    "allplayers_state",
    "allplayers_match_stats",
    "allplayers_weapons",
    "allplayers_position",
    "bomb",
    "grenades",
    "phase_countdowns",
    "map_round_wins",
)


def _q(v: object) -> str:
    return '"' + str(v).replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_cfg(
    name: str,
    uri: str,
    *,
    token: str | None = None,
    timeout: float = 1.1,
    buffer: float = 0.1,
    throttle: float = 0.1,
    heartbeat: float = 30.0,
    sections: tuple[str, ...] | list[str] = DEFAULT_SECTIONS,
) -> str:
    lines = [_q(name), "{"]
    lines.append(f"\t{_q('uri')}\t{_q(uri)}")
    for key, val in (("timeout", timeout), ("buffer", buffer), ("throttle", throttle), ("heartbeat", heartbeat)):
        lines.append(f"\t{_q(key)}\t{_q(val)}")
    if token:
        lines += ["\t" + _q("auth"), "\t{", f"\t\t{_q('token')}\t{_q(token)}", "\t}"]
    lines += ["\t" + _q("data"), "\t{"]
    for s in sections:
        lines.append(f"\t\t{_q(s)}\t{_q(1)}")
    lines += ["\t}", "}", ""]
    return "\n".join(lines)


def cfg_filename(name: str) -> str:
    return f"gamestate_integration_{name}.cfg"


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--cfg-dir", required=True)
    ap.add_argument("--name", default="gsi_server")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=3000)
    ap.add_argument("--path", default="/")
    ap.add_argument("--token")
    ap.add_argument("--throttle", type=float, default=0.1)
    ap.add_argument("--heartbeat", type=float, default=30.0)
    ap.add_argument("--sections", help="comma-separated data sections")
    args = ap.parse_args(argv)

    sections = DEFAULT_SECTIONS
    if args.sections:
        sections = tuple(s.strip() for s in args.sections.split(",") if s.strip())

    path = args.path if args.path.startswith("/") else "/" + args.path
    text = render_cfg(
        args.name,
        f"http://{args.host}:{args.port}{path}",
        token=args.token,
        throttle=args.throttle,
        heartbeat=args.heartbeat,
        sections=sections,
    )

    out = os.path.join(os.path.abspath(args.cfg_dir), cfg_filename(args.name))
    os.makedirs(os.path.dirname(out), exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        f.write(text)
    print(f"Wrote {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
