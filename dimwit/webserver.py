#!/usr/bin/env python3
"""HTTP surface for the device-control layer.

Exposes the toggle and auto-dim decisions and the current levels per zone.
The device layer calls these and applies the returned levels to hardware.
"""

import logging
import os
from typing import List, Optional

import aiofiles
from aiohttp import web
from aiohttp.web import Request, Response

from dimmer import DimCalculator
from lightzones import ZoneDefinition, check_unique, document_format, parse_zone_document, zone_files
from recompute import RecomputePipeline
from twilight import ConfigurationError

logger = logging.getLogger(__name__)


class DimwitServer:
    """aiohttp application wrapping a DimCalculator."""

    def __init__(
        self,
        calculator: DimCalculator,
        pipeline: Optional[RecomputePipeline] = None,
        zones_dir: Optional[str] = None,
        port: int = 8099,
    ):
        self.calculator = calculator
        self.registry = calculator.registry
        self.pipeline = pipeline
        self.zones_dir = zones_dir
        self.port = port
        self.runner: Optional[web.AppRunner] = None
        self.app = web.Application()
        self.setup_routes()

    def setup_routes(self):
        self.app.router.add_get('/health', self.health_check)
        self.app.router.add_get('/api/zones', self.get_zones)
        self.app.router.add_get('/api/zones/{device_id}/levels', self.get_levels)
        self.app.router.add_post('/api/zones/{device_id}/toggle', self.toggle)
        self.app.router.add_post('/api/zones/{device_id}/auto_dim', self.auto_dim)
        self.app.router.add_post('/api/reload', self.reload_zones)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _zone_or_404(self, request: Request):
        device_id = request.match_info["device_id"]
        zone = self.registry.zone(device_id)
        if zone is None:
            raise web.HTTPNotFound(
                text=f'{{"error": "Unknown zone {device_id}"}}', content_type="application/json"
            )
        return zone

    async def _current_value(self, request: Request) -> int:
        try:
            data = await request.json()
            current = data["current"]
            if isinstance(current, bool) or not isinstance(current, int):
                raise TypeError(current)
        except (ValueError, KeyError, TypeError):
            raise web.HTTPBadRequest(
                text='{"error": "Body must be JSON with an integer \'current\'"}',
                content_type="application/json",
            )
        return current

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def health_check(self, request: Request) -> Response:
        return web.json_response({"status": "healthy"})

    async def get_zones(self, request: Request) -> Response:
        now = self.calculator.now()
        zones = []
        for zone in self.registry.zones():
            zones.append({
                "device_id": zone.device_id,
                "frames": len(zone.schedule),
                "sub_zones": [sub.device_id for sub in zone.sub_zones],
                "levels": zone.calculate(now).to_dict(),
            })
        twilight = self.registry.twilight
        return web.json_response({
            "zones": zones,
            "twilight": twilight.as_dict() if twilight else None,
        })

    async def get_levels(self, request: Request) -> Response:
        zone = self._zone_or_404(request)
        return web.json_response(zone.calculate(self.calculator.now()).to_dict())

    async def toggle(self, request: Request) -> Response:
        zone = self._zone_or_404(request)
        current = await self._current_value(request)
        result = self.calculator.toggle_lights(zone, current)
        return web.json_response({
            "results": [{"device_id": r.device_id, "value": r.value} for r in result.results]
        })

    async def auto_dim(self, request: Request) -> Response:
        zone = self._zone_or_404(request)
        current = await self._current_value(request)
        result = self.calculator.auto_dim(zone, current)
        return web.json_response({
            "changed": result.changed,
            "dim_level": result.dim_level,
            "needs_reschedule": result.needs_reschedule,
        })

    async def reload_zones(self, request: Request) -> Response:
        if not self.zones_dir or not os.path.isdir(self.zones_dir):
            return web.json_response({"error": "No zone directory configured"}, status=400)

        try:
            definitions = await self.load_definitions()
            self.registry.replace_all(definitions)
        except ConfigurationError as e:
            logger.error(f"Zone reload rejected: {e}")
            return web.json_response({"error": str(e)}, status=400)

        if self.pipeline is not None:
            self.pipeline.reset()
            self.pipeline.recompute()

        logger.info(f"Reloaded {len(definitions)} zone(s) from {self.zones_dir}")
        return web.json_response({"status": "success", "zones": self.registry.device_ids()})

    async def load_definitions(self) -> List[ZoneDefinition]:
        definitions: List[ZoneDefinition] = []
        for path in zone_files(self.zones_dir):
            async with aiofiles.open(path, 'r') as f:
                text = await f.read()
            try:
                definitions.extend(parse_zone_document(text, document_format(path)))
            except ConfigurationError as e:
                raise ConfigurationError(f"{path}: {e}") from e
        return check_unique(definitions)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, '0.0.0.0', self.port)
        await site.start()
        logger.info(f"Dimwit server started on port {self.port}")

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
