"""HTTP push handler.

Per request:
  received -> decoding -> diffing -> dispatching -> acknowledged
  received -> ... -> failed

The store is only written once a push has been diffed and dispatched, so a
failed or cancelled push leaves the client's baseline as it was. The
committed baseline is the push overlaid on the previous one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from aiohttp import web

from gsi_server.game.diff import diff
from gsi_server.game.events import Event
from gsi_server.game.snapshot import MalformedPayload, Snapshot, decode_body
from gsi_server.log import log_event
from gsi_server.storage.memory import ClientBusy, StoreContention

logger = logging.getLogger("gsi_server.ingest")


class Stage(str, Enum):
    RECEIVED = "received"
    DECODING = "decoding"
    DIFFING = "diffing"
    DISPATCHING = "dispatching"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class Unauthorized(Exception):
    pass


@dataclass
class Push:
    remote: str | None = None
    client_id: str | None = None
    stage: Stage = Stage.RECEIVED
    events: list[Event] = field(default_factory=list)


def _error(status: int, reason: str, message: str, **extra: Any) -> web.Response:
    return web.json_response({"ok": False, "reason": reason, "message": message, **extra}, status=status)


class IngestHub:
    def __init__(self, svc):
        self.svc = svc
        self.accepted = 0
        self.rejected = 0

    def client_id_for(self, snapshot: Snapshot, remote: str | None) -> str:
        if snapshot.auth_token:
            return f"token:{snapshot.auth_token}"
        return f"peer:{remote or 'unknown'}"

    def _authorize(self, snapshot: Snapshot) -> None:
        allowed = self.svc.config.auth_tokens
        if allowed and snapshot.auth_token not in allowed:
            raise Unauthorized("auth token not accepted")

    async def handle(self, request: web.Request) -> web.Response:
        push = Push(remote=request.remote)
        try:
            body = await request.read()
            push.stage = Stage.DECODING
            snapshot = Snapshot.parse(decode_body(body))
            self._authorize(snapshot)
            push.client_id = self.client_id_for(snapshot, request.remote)
            await self.ingest(push.client_id, snapshot, push=push)
        except MalformedPayload as e:
            self._failed(push, logging.INFO, "malformed_payload", error=str(e))
            return _error(400, "malformed_payload", e.message, path=e.path)
        except Unauthorized as e:
            self._failed(push, logging.WARNING, "unauthorized")
            return _error(403, "unauthorized", str(e))
        except ClientBusy as e:
            self._failed(push, logging.WARNING, "client_busy", pending=e.pending)
            return _error(429, "client_busy", str(e))
        except StoreContention as e:
            # Per-client locking should make this impossible.
            self._failed(push, logging.ERROR, "store_contention", error=str(e))
            return _error(500, "store_contention", str(e))
        except web.HTTPException:
            self._failed(push, logging.INFO, "http_error")
            raise
        except Exception:
            logger.exception("push from %s failed during %s", push.remote, push.stage.value)
            self._failed(push, logging.ERROR, "internal_error")
            return _error(500, "internal_error", "push could not be processed")

        self.accepted += 1
        return web.json_response({"ok": True, "events": len(push.events)})

    async def ingest(self, client_id: str, snapshot: Snapshot, *, push: Push | None = None) -> list[Event]:
        """Diff `snapshot` against the client's baseline, dispatch, then commit."""
        push = push or Push(client_id=client_id)
        store = self.svc.store

        async with store.lease(client_id) as lease:
            if lease.baseline is None:
                log_event(logger, logging.INFO, "client.first_contact", client=client_id, provider=snapshot.provider.name)

            push.stage = Stage.DIFFING
            push.events = diff(lease.baseline, snapshot, client_id=client_id)

            push.stage = Stage.DISPATCHING
            await self.svc.dispatcher.publish(push.events)

            # Fields this push left out keep their last known value.
            store.commit(client_id, snapshot.overlay(lease.baseline), generation=lease.generation)

        push.stage = Stage.ACKNOWLEDGED
        if push.events:
            log_event(logger, logging.DEBUG, "push.accepted", client=client_id, events=len(push.events))
        return push.events

    def _failed(self, push: Push, level: int, reason: str, **ctx: Any) -> None:
        failed_at = push.stage
        push.stage = Stage.FAILED
        self.rejected += 1
        log_event(
            logger,
            level,
            "push.failed",
            reason=reason,
            stage=failed_at.value,
            client=push.client_id,
            remote=push.remote,
            **ctx,
        )
