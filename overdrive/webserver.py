#!/usr/bin/env python3
"""Local control server - lets a tray menu or a shell script set the override."""

import json
import logging
from typing import TYPE_CHECKING

from aiohttp import web
from aiohttp.web import Request, Response

from overdrive.const import DEFAULT_CONTROL_PORT
from overdrive.models import FilterState
from overdrive.primitives import OverrideController

if TYPE_CHECKING:
    from overdrive.main import FilterScheduler

logger = logging.getLogger(__name__)


class ControlServer:
    """HTTP surface feeding override events into the OverrideController."""

    def __init__(
        self,
        scheduler: "FilterScheduler",
        overrides: OverrideController,
        host: str = "127.0.0.1",
        port: int = DEFAULT_CONTROL_PORT,
    ):
        self.scheduler = scheduler
        self.overrides = overrides
        self.host = host
        self.port = port
        self.app = web.Application()
        self.runner = None
        self.setup_routes()

    def setup_routes(self):
        """Set up web routes."""
        self.app.router.add_post('/api/override', self.set_override)
        self.app.router.add_get('/api/status', self.get_status)
        self.app.router.add_get('/health', self.health_check)

    async def set_override(self, request: Request) -> Response:
        """Accept {"mode": "on" | "off" | "auto" | "toggle"}."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.json_response({"error": "Body must be JSON"}, status=400)

        mode = body.get("mode") if isinstance(body, dict) else None
        if not isinstance(mode, str):
            return web.json_response({"error": "Missing 'mode'"}, status=400)

        if mode.strip().lower() == "toggle":
            current = self.scheduler.applied
            if current is None and self.scheduler.last_decision is not None:
                current = self.scheduler.last_decision.desired
            self.overrides.toggle(current or FilterState.INACTIVE, source="http")
        else:
            try:
                self.overrides.post(mode, source="http")
            except ValueError as e:
                return web.json_response({"error": str(e)}, status=400)

        return web.json_response(self.scheduler.status())

    async def get_status(self, request: Request) -> Response:
        return web.json_response(self.scheduler.status())

    async def health_check(self, request: Request) -> Response:
        """Health check endpoint."""
        return web.json_response({"status": "healthy"})

    async def start(self):
        """Start the web server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await self.stop()
            raise
        logger.info(f"Control server listening on http://{self.host}:{self.port}")

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Control server stopped")
