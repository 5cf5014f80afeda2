"""Attach to, or launch, a Chrome instance with remote debugging enabled."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

from .discovery import TabDiscovery
from .errors import ChromeLaunchError

logger = logging.getLogger(__name__)

PROFILE_DIR = Path.home() / ".tellfigma-chrome-profile"
START_URL = "https://www.figma.com"
STARTUP_TIMEOUT = 15.0
POLL_INTERVAL = 0.5

MAC_CHROME_PATHS = (
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
)
WINDOWS_CHROME_PATHS = (
    r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
)
LINUX_CHROME_BINARIES = ("google-chrome", "google-chrome-stable", "chromium-browser", "chromium")


def find_chrome() -> str:
    """Locate the Chrome binary. ``CHROME_PATH`` takes precedence."""
    env_path = os.environ.get("CHROME_PATH")
    if env_path:
        return env_path

    if sys.platform == "darwin":
        candidates = [p for p in MAC_CHROME_PATHS if Path(p).exists()]
    elif sys.platform == "win32":
        candidates = [p for p in WINDOWS_CHROME_PATHS if Path(p).exists()]
    else:
        candidates = [p for p in map(shutil.which, LINUX_CHROME_BINARIES) if p]

    if not candidates:
        raise ChromeLaunchError(
            "Chrome not found. Install Google Chrome or set the CHROME_PATH environment variable."
        )
    return candidates[0]


def chrome_command(chrome_path: str, port: int) -> list[str]:
    return [
        chrome_path,
        f"--remote-debugging-port={port}",
        f"--user-data-dir={PROFILE_DIR}",
        "--no-first-run",
        "--no-default-browser-check",
        START_URL,
    ]


async def wait_for_endpoint(
    discovery: TabDiscovery, timeout: float | None = None
) -> bool:
    """Poll ``/json/version`` until Chrome answers or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + (STARTUP_TIMEOUT if timeout is None else timeout)
    while loop.time() < deadline:
        if await discovery.version() is not None:
            return True
        await asyncio.sleep(POLL_INTERVAL)
    return False


async def ensure_chrome(discovery: TabDiscovery, launch: bool = True) -> bool:
    """Make sure a debuggable Chrome listens on the discovery port.

    Returns True if Chrome was launched by us, False if an existing
    instance was found. Raises :class:`ChromeLaunchError` otherwise.
    """
    if await discovery.version() is not None:
        logger.info(f"Connected to existing Chrome on port {discovery.port}")
        return False
    if not launch:
        raise ChromeLaunchError(
            f"No Chrome debugging endpoint at {discovery.base_url}. Start Chrome "
            f"with --remote-debugging-port={discovery.port} or drop --no-launch."
        )

    command = chrome_command(find_chrome(), discovery.port)
    logger.info(f"Launching Chrome with debug port {discovery.port}...")
    try:
        subprocess.Popen(
            command,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise ChromeLaunchError(f"Failed to launch Chrome ({command[0]}): {e}") from e

    if not await wait_for_endpoint(discovery):
        raise ChromeLaunchError(
            f"Chrome debug port {discovery.port} didn't become available "
            f"within {STARTUP_TIMEOUT:g}s"
        )
    logger.info(f"Chrome running on port {discovery.port}")
    return True
