from __future__ import annotations

import time

import httpx

from .models import EndpointCheck


def check_health(url: str, timeout_s: float = 2.0) -> EndpointCheck:
    """Call a service health endpoint.

    Expected JSON: {"status": "healthy"} (or "ok").
    """
    start = time.time()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False) as client:
            resp = client.get(url)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if resp.status_code != 200:
            return EndpointCheck(url=url, healthy=False, message=f"HTTP {resp.status_code}", latency_ms=latency_ms)
        try:
            data = resp.json()
        except ValueError:
            return EndpointCheck(url=url, healthy=False, message="Invalid JSON", latency_ms=latency_ms)
        if isinstance(data, dict) and data.get("status") in {"healthy", "ok"}:
            return EndpointCheck(url=url, healthy=True, message="Healthy", latency_ms=latency_ms)
        return EndpointCheck(url=url, healthy=False, message=f"Unhealthy payload: {data!r}", latency_ms=latency_ms)
    except (httpx.ConnectError, httpx.TimeoutException):
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return EndpointCheck(url=url, healthy=False, message="No response", latency_ms=latency_ms)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return EndpointCheck(url=url, healthy=False, message=f"Error: {type(e).__name__}: {e}", latency_ms=latency_ms)
