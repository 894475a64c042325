"""Target service lifecycle: build, serve, readiness wait, shutdown."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Sequence

import httpx

from .clock import Clock, DEFAULT_CLOCK
from .exceptions import SurgeSetupError
from .logging_config import get_logger

logger = get_logger("server")

DEFAULT_STARTUP_TIMEOUT_SEC = 30.0
DEFAULT_STARTUP_POLL_SEC = 1.0
STOP_GRACE_SEC = 5.0


async def run_build(command: Sequence[str], cwd: str | Path | None = None) -> None:
    """Run the build command to completion. Raises SurgeSetupError on failure."""
    logger.info("Building target: %s", " ".join(command))
    try:
        proc = await asyncio.create_subprocess_exec(*command, cwd=cwd)
    except OSError as e:
        raise SurgeSetupError(
            f"Cannot run build command: {e}",
            context={"command": list(command)},
            original_error=e,
        ) from e
    code = await proc.wait()
    if code != 0:
        raise SurgeSetupError(f"Build failed with code {code}", context={"command": list(command)})


async def start_server(command: Sequence[str], cwd: str | Path | None = None) -> asyncio.subprocess.Process:
    """Spawn the serve command in the background and return its process."""
    logger.info("Starting target server: %s", " ".join(command))
    try:
        return await asyncio.create_subprocess_exec(
            *command,
            cwd=cwd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        raise SurgeSetupError(
            f"Cannot start server: {e}",
            context={"command": list(command)},
            original_error=e,
        ) from e


async def stop_server(proc: asyncio.subprocess.Process, grace_seconds: float = STOP_GRACE_SEC) -> None:
    """Terminate the server, killing it if it ignores SIGTERM for grace_seconds."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Server did not exit within %.0fs, killing it", grace_seconds)
            proc.kill()
            await proc.wait()
    except ProcessLookupError:
        pass


async def wait_for_server(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float = DEFAULT_STARTUP_TIMEOUT_SEC,
    poll_seconds: float = DEFAULT_STARTUP_POLL_SEC,
    clock: Clock = DEFAULT_CLOCK,
) -> None:
    """Poll url until it answers 200 OK.

    Raises:
        SurgeSetupError: If the target is not ready within timeout_seconds
    """
    start_ms = clock.now_ms()
    deadline_ms = start_ms + timeout_seconds * 1000.0
    attempts = 0
    while clock.now_ms() < deadline_ms:
        attempts += 1
        try:
            response = await client.get(url)
            if response.status_code == 200:
                logger.info("Server is ready after %d attempt(s)", attempts)
                return
            logger.debug("Server not ready yet: HTTP %d", response.status_code)
        except httpx.HTTPError as e:
            logger.debug("Server not ready yet: %s", e)
        await clock.sleep(poll_seconds * 1000.0)
    raise SurgeSetupError(
        "Server failed to start within timeout",
        context={"url": url, "timeout_seconds": timeout_seconds},
    )


@asynccontextmanager
async def managed_target(
    build_command: Sequence[str] | None,
    serve_command: Sequence[str] | None,
    cwd: str | Path | None = None,
) -> AsyncIterator[asyncio.subprocess.Process | None]:
    """Build and serve the target for the duration of the block; always stop it."""
    if build_command:
        await run_build(build_command, cwd=cwd)
    proc = await start_server(serve_command, cwd=cwd) if serve_command else None
    try:
        yield proc
    finally:
        if proc is not None:
            await stop_server(proc)
