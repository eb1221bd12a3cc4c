"""Listen address, dispatch defaults, per-client limits."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from gsi_server.net.dispatch import Backpressure


@dataclass
class ServerConfig:
    # Versions
    server_version: str = "0.5.3"

    # Network
    host: str = "127.0.0.1"
    port: int = 3000
    path: str = "/"
    # GSI payloads with allplayers + grenades stay well under this.
    max_body_bytes: int = 1_000_000

    # Auth (empty = accept any token)
    auth_tokens: list[str] = field(default_factory=list)

    # Per-client serialization
    max_pending_per_client: int = 8

    # Subscribers
    subscriber_queue_size: int = 256
    backpressure: str = "block"  # block | drop_oldest | drop_newest

    log_level: str = "INFO"

    def __post_init__(self):
        # Raises ValueError for an unknown policy.
        self.backpressure = Backpressure(self.backpressure).value
        if not self.path.startswith("/"):
            self.path = "/" + self.path

    @staticmethod
    def _parse_int(v: str | None, default: int) -> int:
        if v is None:
            return default
        try:
            return int(v)
        except ValueError:
            return default

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        cfg = cls()
        cfg.host = env.get("GSI_HOST", cfg.host)
        cfg.port = cls._parse_int(env.get("GSI_PORT"), cfg.port)
        cfg.path = env.get("GSI_PATH", cfg.path)
        cfg.max_body_bytes = cls._parse_int(env.get("GSI_MAX_BODY"), cfg.max_body_bytes)
        cfg.max_pending_per_client = cls._parse_int(env.get("GSI_MAX_PENDING"), cfg.max_pending_per_client)
        cfg.subscriber_queue_size = cls._parse_int(env.get("GSI_QUEUE_SIZE"), cfg.subscriber_queue_size)
        cfg.backpressure = env.get("GSI_BACKPRESSURE", cfg.backpressure).strip().lower()
        cfg.log_level = env.get("GSI_LOG_LEVEL", cfg.log_level)

        tokens = env.get("GSI_AUTH_TOKENS")
        if tokens:
            cfg.auth_tokens = [t.strip() for t in tokens.split(",") if t.strip()]

        # Re-run validation on the env-provided values.
        cfg.__post_init__()
        return cfg
