"""Virtual-user scheduling: staggered ramp-up, bounded user loops, join barrier."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable

from .clock import Clock, DEFAULT_CLOCK
from .models import LoadProgress, LoadTestConfig, RequestResult

# (endpoint, user_id, request_id) -> result. Must not raise.
Executor = Callable[[str, int, int], Awaitable[RequestResult]]

DEFAULT_THINK_TIME_MAX_MS = 1000.0


def stagger_delay_ms(index: int, users: int, ramp_up_ms: float) -> float:
    """Start delay of virtual user `index`: ramp_up_ms * index / users.

    User 0 starts immediately; a single user or a zero ramp-up collapses every
    start to 0.
    """
    if users <= 1 or ramp_up_ms <= 0:
        return 0.0
    return ramp_up_ms * index / users


def think_time_ms(rng: random.Random, max_ms: float = DEFAULT_THINK_TIME_MAX_MS) -> float:
    """Random idle time in [0, max_ms)."""
    return rng.random() * max_ms if max_ms > 0 else 0.0


async def run_virtual_user(
    user_id: int,
    config: LoadTestConfig,
    execute: Executor,
    deadline_ms: float,
    *,
    clock: Clock = DEFAULT_CLOCK,
    rng: random.Random | None = None,
    think_time_max_ms: float = DEFAULT_THINK_TIME_MAX_MS,
    progress: LoadProgress | None = None,
) -> list[RequestResult]:
    """
    One virtual user: wait for its stagger slot, then request endpoints
    round-robin until its quota is used or the deadline has passed.

    A request in flight at the deadline is allowed to finish; the deadline is
    only checked between requests. Results go to a buffer owned by this user.
    """
    rng = rng or random.Random()
    delay = stagger_delay_ms(user_id, config.concurrent_users, config.ramp_up_ms)
    if delay > 0:
        await clock.sleep(delay)

    results: list[RequestResult] = []
    if progress is not None:
        progress.started_users += 1
    try:
        request_count = 0
        while request_count < config.requests_per_user and clock.now_ms() <= deadline_ms:
            endpoint = config.endpoint_for(request_count)
            result = await execute(endpoint, user_id, request_count)
            results.append(result)
            request_count += 1
            if progress is not None:
                progress.completed += 1
                if not result.success:
                    progress.failed += 1
            await clock.sleep(think_time_ms(rng, think_time_max_ms))
    finally:
        if progress is not None:
            progress.finished_users += 1
    return results


async def run_virtual_users(
    config: LoadTestConfig,
    execute: Executor,
    test_start_ms: float,
    *,
    clock: Clock = DEFAULT_CLOCK,
    rng: random.Random | None = None,
    think_time_max_ms: float = DEFAULT_THINK_TIME_MAX_MS,
    progress: LoadProgress | None = None,
) -> list[RequestResult]:
    """
    Spawn every virtual user and wait for all of them (the join barrier).

    Returns the merged results only once every user loop has exited; the
    order across users is unspecified.
    """
    rng = rng or random.Random()
    deadline_ms = test_start_ms + config.duration_ms
    users = [
        asyncio.create_task(
            run_virtual_user(
                user_id,
                config,
                execute,
                deadline_ms,
                clock=clock,
                # Think times per user do not depend on interleaving
                rng=random.Random(rng.random()),
                think_time_max_ms=think_time_max_ms,
                progress=progress,
            ),
            name=f"surge-user-{user_id}",
        )
        for user_id in range(config.concurrent_users)
    ]
    try:
        per_user = await asyncio.gather(*users)
    except BaseException:
        for task in users:
            task.cancel()
        raise
    return [result for buffer in per_user for result in buffer]
