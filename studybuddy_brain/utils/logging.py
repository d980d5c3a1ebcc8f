from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
import sys
from typing import Any, MutableMapping

import aiofiles  # type: ignore
import aiofiles.os  # type: ignore
import aiosqlite  # type: ignore
import httpx
import structlog
from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource

from studybuddy_brain.config import settings

structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(settings.log_level)),
    logger_factory=structlog.PrintLoggerFactory(sys.stderr),
)
logger = structlog.get_logger("studybuddy_brain")

# Optional OpenTelemetry metrics when an exporter URL is configured
OTEL_EVENT_COUNTER = None
OTEL_LATENCY_HIST = None
if settings.otel_metrics_url:
    resource = Resource.create({"service.name": "studybuddy-brain"})
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=settings.otel_metrics_url, timeout=5)
    )
    provider = MeterProvider(metric_readers=[reader], resource=resource)
    metrics.set_meter_provider(provider)
    meter = metrics.get_meter(__name__)
    OTEL_EVENT_COUNTER = meter.create_counter("studybuddy_log_events")
    OTEL_LATENCY_HIST = meter.create_histogram("studybuddy_request_latency_ms")


def render_event(event: str, data: dict[str, Any]) -> str:
    """Return ``event`` + ``data`` as a timestamped JSON line."""
    record: MutableMapping[str, Any] = {"event": event, **data}
    record = structlog.processors.TimeStamper(key="timestamp", fmt="iso", utc=True)(logger, "info", record)
    return str(structlog.processors.JSONRenderer()(logger, "info", record))


async def _rotate(path: str, max_bytes: int) -> None:
    if await aiofiles.os.path.exists(path):
        stat = await aiofiles.os.stat(path)
        if stat.st_size > max_bytes:
            ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
            await aiofiles.os.rename(path, f"{path}.{ts}")


async def log_event(event: str, data: dict[str, Any]) -> None:
    """Write an event to the orchestrator log as JSON."""
    json_line = render_event(event, data)

    if OTEL_EVENT_COUNTER is not None:
        OTEL_EVENT_COUNTER.add(1, {"event": event})
    if OTEL_LATENCY_HIST is not None and "latency_ms" in data:
        OTEL_LATENCY_HIST.record(float(data["latency_ms"]), {"event": event})

    if settings.log_db_path:
        async with aiosqlite.connect(settings.log_db_path) as db:
            await db.execute("CREATE TABLE IF NOT EXISTS logs (json TEXT)")
            await db.execute("INSERT INTO logs (json) VALUES (?)", (json_line,))
            await db.commit()
        return

    log_dir = settings.log_path
    os.makedirs(log_dir, exist_ok=True)
    path = os.path.join(log_dir, "orchestrator.log")
    await _rotate(path, settings.log_max_bytes)
    async with aiofiles.open(path, "a") as f:
        await f.write(json_line + "\n")

    if settings.log_stream_url:
        async with httpx.AsyncClient(timeout=10) as client:
            await client.post(settings.log_stream_url, json=json.loads(json_line))


__all__ = ["logger", "log_event", "render_event"]
