#!/usr/bin/env python3
"""Web server for Home Assistant ingress - fade status and preview API."""

import json
import logging
from typing import Optional

from aiohttp import web
from aiohttp.web import Request, Response

from .const import DEFAULT_WEB_PORT
from .engine import preview
from .options import get_data_dir, load_options, save_designer_options
from .scheduler import FadeScheduler

logger = logging.getLogger(__name__)


class FadeWebServer:
    """Web server exposing channel state, a one-shot preview and options."""

    def __init__(self, scheduler: FadeScheduler, port: int = DEFAULT_WEB_PORT,
                 data_dir: Optional[str] = None):
        self.scheduler = scheduler
        self.port = port
        self.data_dir = data_dir or get_data_dir()
        self.app = web.Application()
        self.setup_routes()

    def setup_routes(self):
        """Set up web routes."""
        # API routes - must handle all ingress prefixes
        self.app.router.add_route('GET', '/{path:.*}/api/config', self.get_config)
        self.app.router.add_route('POST', '/{path:.*}/api/config', self.save_config)
        self.app.router.add_route('GET', '/{path:.*}/api/channels', self.get_channels)
        self.app.router.add_route('POST', '/{path:.*}/api/preview', self.post_preview)
        self.app.router.add_route('GET', '/{path:.*}/health', self.health_check)

        # Direct API routes (for non-ingress access)
        self.app.router.add_get('/api/config', self.get_config)
        self.app.router.add_post('/api/config', self.save_config)
        self.app.router.add_get('/api/channels', self.get_channels)
        self.app.router.add_post('/api/preview', self.post_preview)
        self.app.router.add_get('/health', self.health_check)

    async def get_channels(self, request: Request) -> Response:
        """Current per-channel state."""
        return web.json_response(self.scheduler.snapshot())

    async def post_preview(self, request: Request) -> Response:
        """Validate and interpolate a posted record without starting a timer."""
        try:
            record = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"error": "Request body is not valid JSON"}, status=400)
        if not isinstance(record, dict):
            return web.json_response({"error": "Expected a JSON object"}, status=400)

        data, report = preview(record, self.scheduler.clock(), self.scheduler.provider)
        body = report.as_dict()
        if data is None:
            return web.json_response(body, status=400)
        body["data"] = data
        return web.json_response(body)

    async def get_config(self, request: Request) -> Response:
        """Get current options."""
        try:
            config = await load_options(self.data_dir)
            return web.json_response(config)
        except OSError as e:
            logger.error(f"Error getting config: {e}")
            return web.json_response({"error": str(e)}, status=500)

    async def save_config(self, request: Request) -> Response:
        """Save option overrides."""
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"error": "Request body is not valid JSON"}, status=400)
        if not isinstance(data, dict):
            return web.json_response({"error": "Expected a JSON object"}, status=400)

        try:
            config = await load_options(self.data_dir)
            config.update(data)
            await save_designer_options(config, self.data_dir)
            # Reload so the response reflects sanitised values
            config = await load_options(self.data_dir)
            return web.json_response({"status": "success", "config": config})
        except OSError as e:
            logger.error(f"Error saving config: {e}")
            return web.json_response({"error": str(e)}, status=500)

    async def health_check(self, request: Request) -> Response:
        """Health check endpoint."""
        return web.json_response({"status": "healthy", "channels": len(self.scheduler.registry)})

    async def start(self) -> web.AppRunner:
        """Start the web server and return its runner for cleanup."""
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, '0.0.0.0', self.port)
        await site.start()
        logger.info(f"Fade web server started on port {self.port}")
        return runner

