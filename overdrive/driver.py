#!/usr/bin/env python3
"""Filter drivers - push a color temperature to the compositor's gamma tool."""

import asyncio
import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from overdrive.models import OverdriveError

logger = logging.getLogger(__name__)

# A stuck socket must never hang the control loop
COMMAND_TIMEOUT = 0.5


class DriverError(OverdriveError):
    """The external filter tool could not be reached or refused the command."""


class FilterDriver(ABC):
    """Contract the scheduler uses to change the display's color temperature."""

    @abstractmethod
    async def apply(self, temperature: int) -> None:
        """Activate the filter at *temperature* Kelvin."""

    @abstractmethod
    async def clear(self) -> None:
        """Restore the neutral color temperature."""


def resolve_socket_path(env: Optional[dict] = None) -> Path:
    """Locate hyprsunset's IPC socket for the running Hyprland instance.

    Raises:
        DriverError: HYPRLAND_INSTANCE_SIGNATURE or XDG_RUNTIME_DIR is unset.
    """
    env = os.environ if env is None else env
    signature = env.get("HYPRLAND_INSTANCE_SIGNATURE")
    if not signature:
        raise DriverError("HYPRLAND_INSTANCE_SIGNATURE not set")
    runtime_dir = env.get("XDG_RUNTIME_DIR")
    if not runtime_dir:
        raise DriverError("XDG_RUNTIME_DIR not set")
    return Path(runtime_dir) / "hypr" / signature / ".hyprsunset.sock"


class HyprsunsetDriver(FilterDriver):
    """Talks to hyprsunset over its Unix socket."""

    def __init__(self, socket_path: Path, timeout: float = COMMAND_TIMEOUT):
        """Initialize the driver.

        Args:
            socket_path: Path to hyprsunset's IPC socket
            timeout: Seconds allowed for connect + write
        """
        self.socket_path = Path(socket_path)
        self.timeout = timeout

    async def send_command(self, command: str) -> None:
        """Send one command; hyprsunset acts on it once the write lands."""
        try:
            await asyncio.wait_for(self._send(command), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise DriverError(f"hyprsunset did not accept '{command}' within {self.timeout}s") from e
        except OSError as e:
            raise DriverError(f"Failed to send '{command}' to hyprsunset at {self.socket_path}: {e}") from e

    async def _send(self, command: str) -> None:
        _, writer = await asyncio.open_unix_connection(str(self.socket_path))
        try:
            writer.write(command.encode())
            await writer.drain()
        finally:
            writer.close()
            await writer.wait_closed()

    async def apply(self, temperature: int) -> None:
        await self.send_command(f"temperature {int(temperature)}")

    async def clear(self) -> None:
        await self.send_command("identity")

    async def wait_until_ready(self, tries: int = 10, delay: float = 1.0) -> None:
        """Block until hyprsunset has created its socket.

        Raises:
            DriverError: Socket still missing after *tries* attempts.
        """
        for attempt in range(1, tries + 1):
            if self.socket_path.exists():
                logger.info(f"hyprsunset socket available at {self.socket_path}")
                return
            logger.info(f"hyprsunset socket not there yet ({attempt}/{tries}), waiting {delay:.0f}s")
            await asyncio.sleep(delay)
        raise DriverError(f"hyprsunset did not create {self.socket_path}")


def verify_installed(binary: str = "hyprsunset") -> None:
    """Raise DriverError when the hyprsunset binary is not on PATH."""
    if shutil.which(binary) is None:
        raise DriverError(f"{binary} is not installed")
    logger.info(f"{binary} is installed")
