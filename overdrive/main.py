#!/usr/bin/env python3
"""hyprsunset-overdrive - keeps the blue-light filter in step with the sun."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from overdrive.brain import SolarCache, SolarError, resolve
from overdrive.config import ConfigError, OverdriveConfig, load_config
from overdrive.const import (
    APP_NAME,
    ENV_LOG_LEVEL,
    EXIT_CONFIG,
    EXIT_FATAL,
    EXIT_OK,
    LOG_FILE_NAME,
)
from overdrive.driver import DriverError, FilterDriver, HyprsunsetDriver, resolve_socket_path, verify_installed
from overdrive.lock import InstanceLock, LockError, default_lock_path
from overdrive.models import FilterState, Override, ScheduleDecision
from overdrive.primitives import OverrideController
from overdrive.webserver import ControlServer

logger = logging.getLogger(__name__)


class Phase(Enum):
    """What the control loop is doing right now."""
    IDLE = "idle"
    APPLYING = "applying"
    SLEEPING = "sleeping"


class FilterScheduler:
    """Control loop: resolve, apply when the state changes, sleep until the next event."""

    def __init__(
        self,
        config: OverdriveConfig,
        driver: FilterDriver,
        overrides: OverrideController,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the scheduler.

        Args:
            config: Validated configuration (location, temperature, intervals)
            driver: Filter driver used to apply/clear the filter
            overrides: Controller owning the manual override
            clock: Returns the current timezone-aware local time
        """
        self.config = config
        self.driver = driver
        self.overrides = overrides
        self._clock = clock or self._local_now
        self.cache = SolarCache(config.location)
        self.phase = Phase.IDLE
        self.applied: Optional[FilterState] = None  # None until an apply succeeds
        self.last_decision: Optional[ScheduleDecision] = None
        self.last_error: Optional[str] = None
        self.iterations = 0
        self.override_changes = 0
        self.last_override_change: Optional[datetime] = None
        self._stop = asyncio.Event()
        overrides.add_listener(self._on_override_change)

    def _local_now(self) -> datetime:
        tz = self.config.tzinfo
        return datetime.now(tz) if tz else datetime.now().astimezone()

    def now(self) -> datetime:
        return self._clock()

    def _on_override_change(self, old: Override, new: Override) -> None:
        self.override_changes += 1
        self.last_override_change = self.now()
        if self.phase is Phase.SLEEPING:
            logger.debug(f"Override changed to {new.mode.value} while sleeping, waking early")

    def stop(self) -> None:
        """Ask the loop to finish; interrupts an in-progress sleep."""
        if not self._stop.is_set():
            logger.info("Shutdown requested")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def _apply(self, desired: FilterState) -> bool:
        self.phase = Phase.APPLYING
        try:
            if desired is FilterState.ACTIVE:
                await self.driver.apply(self.config.temperature)
            else:
                await self.driver.clear()
        except DriverError as e:
            verb = "set" if desired is FilterState.ACTIVE else "disable"
            logger.error(f"Failed to {verb} blue light filter: {e}")
            self.applied = None
            self.last_error = str(e)
            return False

        self.applied = desired
        self.last_error = None
        if desired is FilterState.ACTIVE:
            logger.info(f"Successfully set blue light filter ({self.config.temperature}K)")
        else:
            logger.info("Successfully disabled blue light filter")
        return True

    async def tick(self) -> ScheduleDecision:
        """One loop iteration minus the sleep."""
        now = self.now()
        self.overrides.expire(now)
        # Anything posted after this point wakes the following sleep
        self.overrides.changed.clear()

        decision = resolve(now, self.config.location, self.overrides.snapshot(), self.cache)
        if decision != self.last_decision:
            logger.info(
                f"Desired filter state: {decision.desired.value} ({decision.reason}), "
                f"next check at {decision.next_wake.astimezone(now.tzinfo).isoformat()}"
            )
        self.last_decision = decision
        self.iterations += 1

        if decision.desired != self.applied:
            await self._apply(decision.desired)
        return decision

    def _sleep_seconds(self, decision: ScheduleDecision) -> float:
        seconds = (decision.next_wake - self.now()).total_seconds()
        seconds = min(seconds, self.config.resync_interval)
        if self.applied != decision.desired:
            seconds = min(seconds, self.config.retry_interval)
        return max(seconds, 0.0)

    async def _sleep(self, seconds: float) -> bool:
        """Sleep up to *seconds*. Returns True when woken early."""
        self.phase = Phase.SLEEPING
        waiters = [
            asyncio.ensure_future(self.overrides.changed.wait()),
            asyncio.ensure_future(self._stop.wait()),
        ]
        try:
            done, _ = await asyncio.wait(waiters, timeout=seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return bool(done)

    async def run(self) -> None:
        """Run until stop() is called.

        SolarError other than NoTransition (handled inside resolve) propagates
        and ends the loop; driver failures never do.
        """
        logger.info(
            f"Scheduler started for lat {self.config.latitude}, lon {self.config.longitude}, "
            f"alt {self.config.altitude}m"
        )
        try:
            while not self.stopping:
                decision = await self.tick()
                if self.stopping:
                    break
                seconds = self._sleep_seconds(decision)
                logger.debug(f"Sleeping for {seconds / 3600:.2f} hours")
                if await self._sleep(seconds) and not self.stopping:
                    logger.info("Woken early by override change")
        finally:
            self.phase = Phase.IDLE
        logger.info("Scheduler stopped")

    def status(self) -> Dict[str, Any]:
        override = self.overrides.snapshot()
        decision = self.last_decision
        return {
            "phase": self.phase.value,
            "applied": self.applied.value if self.applied else None,
            "desired": decision.desired.value if decision else None,
            "reason": decision.reason if decision else None,
            "next_wake": decision.next_wake.isoformat() if decision else None,
            "override": override.mode.value,
            "override_expires_at": override.expires_at.isoformat() if override.expires_at else None,
            "temperature": self.config.temperature,
            "last_error": self.last_error,
            "override_changes": self.override_changes,
            "last_override_change": (
                self.last_override_change.isoformat() if self.last_override_change else None
            ),
        }


def setup_logging() -> None:
    """Log to stderr and, when the runtime dir exists, to a log file beside the lock."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    runtime_dir = os.getenv("XDG_RUNTIME_DIR")
    if runtime_dir and os.path.isdir(runtime_dir):
        handlers.append(logging.FileHandler(os.path.join(runtime_dir, LOG_FILE_NAME), mode="w", encoding="utf-8"))

    logging.basicConfig(
        level=os.getenv(ENV_LOG_LEVEL, "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


async def run_daemon(config: OverdriveConfig, driver: FilterDriver) -> None:
    """Wire the scheduler, signal handlers and control server on the running loop."""
    loop = asyncio.get_running_loop()
    overrides = OverrideController(clock=lambda: scheduler.now())
    scheduler = FilterScheduler(config, driver, overrides)

    def _on_signal(signame: str) -> None:
        logger.info(f"Shutdown signal received: {signame}")
        scheduler.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig.name)

    server = None
    if config.control_port:
        server = ControlServer(scheduler, overrides, port=config.control_port)
        try:
            await server.start()
        except OSError as e:
            logger.error(f"Control server unavailable on port {config.control_port}: {e}")
            logger.error("Continuing without the control endpoint")
            server = None

    try:
        await scheduler.run()
    finally:
        if server is not None:
            await server.stop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def _start(config: OverdriveConfig) -> None:
    verify_installed()
    driver = HyprsunsetDriver(resolve_socket_path())
    await driver.wait_until_ready()
    await run_daemon(config, driver)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(prog=APP_NAME, description=__doc__)
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    args = parser.parse_args(argv)

    setup_logging()

    try:
        config = asyncio.run(load_config(args.config))
    except ConfigError as e:
        logger.error(f"{e}")
        return EXIT_CONFIG

    try:
        with InstanceLock(default_lock_path()):
            asyncio.run(_start(config))
    except LockError as e:
        logger.error(f"{e}")
        logger.error("Exiting")
        return EXIT_FATAL
    except DriverError as e:
        logger.error(f"Failed to start hyprsunset driver: {e}")
        return EXIT_FATAL
    except SolarError as e:
        logger.error(f"Fatal solar calculation error: {e}")
        return EXIT_FATAL

    logger.info("Cleanup complete")
    logger.info("Exiting")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
