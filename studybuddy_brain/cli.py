"""Command line interface for :mod:`studybuddy_brain`.

This module uses `Typer` to expose commands for running a single
orchestration, inspecting provider health and sweeping expired memory.
"""

import asyncio
import json
from typing import Optional

import typer

from studybuddy_brain.config import settings
from studybuddy_brain.memory.records import DAY_S
from studybuddy_brain.model.descriptor import COMPLETION, EMBEDDING
from studybuddy_brain.orchestrator.engine import OrchestrationEngine
from studybuddy_brain.orchestrator.models import OrchestrationRequest

app = typer.Typer(add_completion=False, help="StudyBuddy orchestration and memory tools")


def _build_engine() -> OrchestrationEngine:
    return OrchestrationEngine.from_settings(settings)


@app.command()
def ask(
    message: str = typer.Argument(..., help="Message to answer"),
    user: str = typer.Option("cli-user", help="User identifier"),
    conversation: str = typer.Option("cli", help="Conversation identifier"),
    personal: Optional[bool] = typer.Option(None, "--personal/--general", help="Force personal or general retrieval"),
    level: Optional[str] = typer.Option(None, help="Context level: minimal, balanced or comprehensive"),
) -> None:
    """Run one orchestration and print the response as JSON."""
    engine = _build_engine()
    request = OrchestrationRequest(
        user_id=user,
        conversation_id=conversation,
        message=message,
        is_personal_query=personal,
        context_level=level,
    )

    async def _run():
        response = await engine.orchestrate(request)
        await engine.drain()
        return response

    response = asyncio.run(_run())
    typer.echo(json.dumps(response.model_dump(by_alias=True), indent=2))
    if response.error is not None:
        raise typer.Exit(code=1)


@app.command()
def providers() -> None:
    """Print providers in fallback order with their health."""
    registry = _build_engine().registry
    snapshot = registry.snapshot()
    data = {
        "completion": [d.id for d in registry.candidates(COMPLETION, exclude_open=False)],
        "embedding": [d.id for d in registry.candidates(EMBEDDING, exclude_open=False)],
        "health": snapshot,
    }
    typer.echo(json.dumps(data, indent=2))


@app.command()
def sweep(
    purge: bool = typer.Option(False, help="Also hard-delete inactive records"),
    older_than_days: float = typer.Option(30.0, help="Only purge records created before this many days ago"),
) -> None:
    """Deactivate expired memory records."""
    store = _build_engine().store

    async def _run():
        swept = await store.sweep_expired()
        purged = await store.purge_inactive(store.clock() - older_than_days * DAY_S) if purge else 0
        return swept, purged

    swept, purged = asyncio.run(_run())
    typer.echo(json.dumps({"deactivated": swept, "purged": purged}))


def main() -> None:  # pragma: no cover - console script
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
