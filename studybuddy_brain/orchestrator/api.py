from __future__ import annotations

from threading import Lock
from typing import Any, Dict

from fastapi import Depends, FastAPI, Response
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from studybuddy_brain.config import settings
from studybuddy_brain.orchestrator.engine import OrchestrationEngine
from studybuddy_brain.orchestrator.models import OrchestrationRequest, OrchestrationResponse

app = FastAPI(title="StudyBuddy Brain API")
if settings.otel_trace_url:
    FastAPIInstrumentor.instrument_app(app)

_engine_lock = Lock()


def get_engine() -> OrchestrationEngine:
    """Return the application's engine, creating it if needed."""
    engine = getattr(app.state, "engine", None)
    if engine is None:
        with _engine_lock:
            engine = getattr(app.state, "engine", None)
            if engine is None:
                engine = OrchestrationEngine.from_settings(settings)
                app.state.engine = engine
    return engine


@app.on_event("startup")
async def _start_engine() -> None:
    get_engine().start()


@app.on_event("shutdown")
async def _stop_engine() -> None:
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.stop()


@app.post("/orchestrate", response_model=OrchestrationResponse)
async def orchestrate(
    request: OrchestrationRequest, engine: OrchestrationEngine = Depends(get_engine)
) -> OrchestrationResponse:
    # terminal errors travel in the body's ``error`` object
    return await engine.orchestrate(request)


@app.get("/health")
async def health(engine: OrchestrationEngine = Depends(get_engine)) -> Dict[str, Any]:
    return {"status": "ok", "providers": engine.registry.snapshot()}


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
