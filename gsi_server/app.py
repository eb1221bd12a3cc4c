"""HTTP entrypoint for game state pushes.

The game only cares about the status code of each push. Downstream code
subscribes to events through `GsiService.subscribe` (or the dispatcher).
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from aiohttp import web

from gsi_server.game.config import ServerConfig
from gsi_server.log import configure_logging, log_event
from gsi_server.net.dispatch import EventDispatcher, Subscription
from gsi_server.net.ingest import IngestHub
from gsi_server.storage.memory import SnapshotStore

logger = logging.getLogger("gsi_server.app")


class GsiService:
    def __init__(self, config: ServerConfig):
        self.config = config
        self.server_id = str(uuid.uuid4())
        self.start_time = time.time()

        self.store = SnapshotStore(max_pending=config.max_pending_per_client)
        self.dispatcher = EventDispatcher(queue_size=config.subscriber_queue_size, policy=config.backpressure)
        self.hub = IngestHub(self)

    def subscribe(self, handler, **opts: Any) -> Subscription:
        return self.dispatcher.subscribe(handler, **opts)

    async def start(self) -> None:
        await self.dispatcher.start()

    async def stop(self) -> None:
        await self.dispatcher.close()

    def version_payload(self) -> dict[str, Any]:
        return {
            "serverId": self.server_id,
            "serverVersion": self.config.server_version,
        }


def create_app(config: ServerConfig, svc: GsiService | None = None) -> web.Application:
    svc = svc or GsiService(config)
    app = web.Application(client_max_size=config.max_body_bytes)

    app["config"] = config
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()
        log_event(logger, logging.INFO, "service.started", path=config.path, subscribers=len(svc.dispatcher.subscriptions))

    async def on_cleanup(_: web.Application):
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    async def health(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "uptimeSec": time.time() - svc.start_time,
                "clients": len(svc.store),
                "accepted": svc.hub.accepted,
                "rejected": svc.hub.rejected,
                "subscribers": svc.dispatcher.stats(),
                **svc.version_payload(),
            }
        )

    async def version(_: web.Request):
        return web.json_response(svc.version_payload())

    async def push(request: web.Request):
        return await svc.hub.handle(request)

    app.router.add_get("/health", health)
    app.router.add_get("/version", version)
    app.router.add_post(config.path, push)

    return app


class ServerHandle:
    """A running server started with `start_server`."""

    def __init__(self, runner: web.AppRunner, site: web.TCPSite, svc: GsiService):
        self.runner = runner
        self.site = site
        self.svc = svc

    async def stop(self) -> None:
        await self.runner.cleanup()


async def start_server(svc: GsiService, host: str | None = None, port: int | None = None) -> ServerHandle:
    """Serve `svc` inside an already running event loop."""
    app = create_app(svc.config, svc)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host or svc.config.host, svc.config.port if port is None else port)
    await site.start()
    log_event(logger, logging.INFO, "server.listening", host=host or svc.config.host, port=svc.config.port if port is None else port)
    return ServerHandle(runner, site, svc)


def main() -> None:
    config = ServerConfig.from_env()
    configure_logging(config.log_level)
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port, print=None)


if __name__ == "__main__":
    main()
