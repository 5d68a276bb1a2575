"""
wspipe.metrics
==============

Prometheus metrics for the pipe engine, on the default `prometheus_client`
registry:

- bytes copied per Transfer direction,
- sessions started / currently running / failed (by error code),
- reconnect attempts,
- broadcast messages dropped for slow consumers.

`start_metrics_server()` serves them for scraping (CLI: --metrics-port).

Label hints
-----------
- direction: "forward" | "reverse"
- error_type: a PipeErrorCode value, or the exception class name

Usage
-----
    from wspipe.metrics import inc_bytes, session_started

    inc_bytes("forward", 1024)
"""

from __future__ import annotations

from prometheus_client import (REGISTRY, CollectorRegistry, Counter, Gauge,
                               start_http_server)

REG: CollectorRegistry = REGISTRY

wspipe_bytes_total = Counter(
    "wspipe_bytes_total",
    "Bytes copied between peers by transfer direction.",
    labelnames=("direction",),
    registry=REG,
)
wspipe_sessions_total = Counter(
    "wspipe_sessions_total",
    "Sessions started.",
    registry=REG,
)
wspipe_sessions_active = Gauge(
    "wspipe_sessions_active",
    "Sessions currently running.",
    registry=REG,
)
wspipe_session_errors_total = Counter(
    "wspipe_session_errors_total",
    "Sessions/connections reported to the error sink, by error type.",
    labelnames=("error_type",),
    registry=REG,
)
wspipe_reconnects_total = Counter(
    "wspipe_reconnects_total",
    "Replacement connections attempted by autoreconnect.",
    registry=REG,
)
wspipe_broadcast_dropped_total = Counter(
    "wspipe_broadcast_dropped_total",
    "Broadcast items dropped from a full consumer queue.",
    registry=REG,
)


def inc_bytes(direction: str, n: int) -> None:
    if n <= 0:
        return
    wspipe_bytes_total.labels(direction=direction).inc(n)


def session_started() -> None:
    wspipe_sessions_total.inc()
    wspipe_sessions_active.inc()


def session_finished() -> None:
    wspipe_sessions_active.dec()


def inc_error(error_type: str) -> None:
    wspipe_session_errors_total.labels(error_type=error_type).inc()


def inc_reconnect() -> None:
    wspipe_reconnects_total.inc()


def inc_broadcast_drop() -> None:
    wspipe_broadcast_dropped_total.inc()


def start_metrics_server(port: int, addr: str = "127.0.0.1", registry: CollectorRegistry = REG) -> None:
    """Expose /metrics over HTTP from a background thread owned by prometheus_client."""
    start_http_server(port, addr=addr, registry=registry)


__all__ = [
    "REG",
    "inc_bytes",
    "session_started",
    "session_finished",
    "inc_error",
    "inc_reconnect",
    "inc_broadcast_drop",
    "start_metrics_server",
]
