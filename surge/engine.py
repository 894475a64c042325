"""Request execution: one timed HTTP call per virtual-user step.

- execute_request: single request with timing, never raises
- choose_method: GET/POST split from the simulation profile
- build_payload: synthetic JSON POST body of a configured size
- create_client: shared async HTTP client factory
"""

from __future__ import annotations

import random
import time

import httpx
import orjson

from .clock import Clock, DEFAULT_CLOCK
from .models import RequestResult

# Tuned for throughput: high connection limits, shared client
DEFAULT_MAX_CONNECTIONS = 1000
DEFAULT_MAX_KEEPALIVE = 200
DEFAULT_KEEPALIVE_EXPIRY = 30.0
# Default timeout for HTTP requests (seconds)
DEFAULT_TIMEOUT_SEC = 30.0
DEFAULT_GET_RATIO = 0.8
USER_AGENT_PREFIX = "surge-user-"
CACHE_HEADER = "cache-control"
PAYLOAD_FILLER = "x"

_default_rng = random.Random()


def choose_method(rng: random.Random, get_ratio: float = DEFAULT_GET_RATIO) -> str:
    """GET with probability get_ratio, otherwise POST."""
    return "GET" if rng.random() < get_ratio else "POST"


def build_headers(user_id: int) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "User-Agent": f"{USER_AGENT_PREFIX}{user_id}",
    }


def build_payload(user_id: int, request_id: int, payload_size: int) -> bytes:
    """JSON body {userId, requestId, timestamp, data} with payload_size filler bytes."""
    return orjson.dumps(
        {
            "userId": user_id,
            "requestId": request_id,
            "timestamp": int(time.time() * 1000),
            "data": PAYLOAD_FILLER * payload_size,
        }
    )


async def _read_size(response: httpx.Response) -> int:
    """Body size in bytes. A failing read degrades to 0; the stream is always closed."""
    try:
        body = await response.aread()
    except Exception:  # noqa: BLE001
        return 0
    finally:
        await response.aclose()
    return len(body)


async def execute_request(
    client: httpx.AsyncClient,
    endpoint: str,
    user_id: int,
    request_id: int,
    *,
    test_start_ms: float = 0.0,
    payload_size: int | None = None,
    rng: random.Random | None = None,
    get_ratio: float = DEFAULT_GET_RATIO,
    clock: Clock = DEFAULT_CLOCK,
) -> RequestResult:
    """Execute a single HTTP request and return its timed result.

    Args:
        client: Shared async HTTP client (base_url points at the target)
        endpoint: URL path to request
        user_id: Virtual user issuing the request (sent in User-Agent)
        request_id: Sequence number within the user
        test_start_ms: Clock reading at test start; timestamps are relative to it
        payload_size: Filler bytes for POST bodies (no body when None or 0)
        rng: Source of the GET/POST choice
        get_ratio: Probability of GET
        clock: Time source

    Returns:
        RequestResult with timing, status code, size and cache flag

    Note:
        This never raises. Transport errors become a failed result carrying
        the exception message and the time elapsed until the failure. The
        response time stops when status and headers arrive; a body that fails
        to read afterwards only zeroes response_size.
    """
    method = choose_method(rng or _default_rng, get_ratio)
    headers = build_headers(user_id)
    body = build_payload(user_id, request_id, payload_size) if method == "POST" and payload_size else None

    start_ms = clock.now_ms()
    timestamp_ms = start_ms - test_start_ms
    try:
        request = client.build_request(method, endpoint, headers=headers, content=body)
        # Streamed so a broken body still counts as a response
        response = await client.send(request, stream=True)
        elapsed = clock.now_ms() - start_ms
    except Exception as e:  # noqa: BLE001
        return RequestResult(
            user_id=user_id,
            request_id=request_id,
            endpoint=endpoint,
            method=method,
            success=False,
            response_time_ms=clock.now_ms() - start_ms,
            timestamp_ms=timestamp_ms,
            error=str(e) or type(e).__name__,
        )

    response_size = await _read_size(response)
    return RequestResult(
        user_id=user_id,
        request_id=request_id,
        endpoint=endpoint,
        method=method,
        success=200 <= response.status_code < 300,
        status_code=response.status_code,
        response_time_ms=elapsed,
        response_size=response_size,
        timestamp_ms=timestamp_ms,
        from_cache=CACHE_HEADER in response.headers,
    )


def create_client(
    base_url: str = "",
    http2: bool = True,
    timeout: float = DEFAULT_TIMEOUT_SEC,
    limits: httpx.Limits | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the shared async HTTP client for a run.

    Args:
        base_url: Target service root; endpoints are resolved against it
        http2: Enable HTTP/2 (requires the h2 package)
        timeout: Request timeout in seconds
        limits: Custom connection limits (high defaults if not specified)
        transport: Alternate transport (e.g. httpx.MockTransport in tests)

    Returns:
        Configured AsyncClient, to be used as an async context manager
    """
    limits = limits or httpx.Limits(
        max_connections=DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections=DEFAULT_MAX_KEEPALIVE,
        keepalive_expiry=DEFAULT_KEEPALIVE_EXPIRY,
    )
    return httpx.AsyncClient(
        base_url=base_url,
        http2=http2,
        timeout=timeout,
        limits=limits,
        transport=transport,
    )
