#!/usr/bin/env python3
"""Dimwit service - recomputes zone levels and serves toggle decisions."""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from almanac import AlmanacSource, AnchorCache, AstralSource, SunriseSunsetFileSource
from dimmer import DimCalculator
from lightzones import ZoneRegistry, load_zone_directory
from recompute import DEFAULT_CLOCK_INTERVAL, DEFAULT_DATE_INTERVAL, RecomputePipeline
from timeframes import LightLevels
from twilight import ConfigurationError
from webserver import DimwitServer

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    zones_dir: str = "zones"
    almanac_dir: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: str = "UTC"
    port: int = 8099
    clock_interval: float = DEFAULT_CLOCK_INTERVAL
    date_interval: float = DEFAULT_DATE_INTERVAL
    log_level: str = "INFO"


def _float_env(*names: str) -> Optional[float]:
    for name in names:
        value = os.getenv(name)
        if value:
            try:
                return float(value)
            except ValueError:
                logger.warning(f"Ignoring non-numeric {name}={value!r}")
    return None


def load_settings() -> Settings:
    """Read settings from environment variables."""
    return Settings(
        zones_dir=os.getenv("DIMWIT_ZONES_DIR", "zones"),
        almanac_dir=os.getenv("DIMWIT_ALMANAC_DIR") or None,
        latitude=_float_env("LATITUDE", "HASS_LATITUDE"),
        longitude=_float_env("LONGITUDE", "HASS_LONGITUDE"),
        timezone=os.getenv("TZ", "UTC") or "UTC",
        port=int(os.getenv("DIMWIT_PORT", "8099")),
        clock_interval=float(os.getenv("DIMWIT_CLOCK_INTERVAL", str(DEFAULT_CLOCK_INTERVAL))),
        date_interval=float(os.getenv("DIMWIT_DATE_INTERVAL", str(DEFAULT_DATE_INTERVAL))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def create_source(settings: Settings) -> AlmanacSource:
    if settings.almanac_dir:
        logger.info(f"Using twilight data files from {settings.almanac_dir}")
        return SunriseSunsetFileSource(settings.almanac_dir, settings.timezone)
    if settings.latitude is None or settings.longitude is None:
        raise ValueError("Set DIMWIT_ALMANAC_DIR, or LATITUDE and LONGITUDE for computed sun times")
    logger.info(f"Computing sun times for {settings.latitude}, {settings.longitude} ({settings.timezone})")
    return AstralSource(settings.latitude, settings.longitude, settings.timezone)


def make_clock(timezone: str) -> Callable[[], datetime]:
    """Wall clock in the zone the anchors are converted to."""
    try:
        tzinfo = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone {timezone!r}; set TZ to an IANA zone name") from e

    def now() -> datetime:
        return datetime.now(tzinfo)

    return now


def log_levels(device_id: str, levels: LightLevels) -> None:
    logger.info(f"[{device_id}] {levels.low_level}/{levels.high_level}")


async def run(settings: Settings) -> None:
    # One clock for everything; anchors are local times in settings.timezone
    clock = make_clock(settings.timezone)
    cache = AnchorCache(create_source(settings))
    today = clock().date()
    cache.refresh(today)

    registry = ZoneRegistry(cache.lookup(today), load_zone_directory(settings.zones_dir))
    pipeline = RecomputePipeline(
        registry,
        cache,
        clock=clock,
        clock_interval=settings.clock_interval,
        date_interval=settings.date_interval,
    )
    pipeline.subscribe(log_levels)

    calculator = DimCalculator(registry, clock)
    server = DimwitServer(calculator, pipeline, settings.zones_dir, settings.port)

    await pipeline.start()
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
        await pipeline.stop()
        cache.close()


def main():
    """Main entry point."""
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(run(settings))
    except ConfigurationError as e:
        logger.error(f"Invalid zone configuration: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
