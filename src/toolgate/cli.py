"""Typer-based CLI for toolgate."""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .cache import ClassificationCache
from .capabilities import HandlerCapabilityExecutor, StaticCapabilityCatalog
from .classifier import IntentClassifier
from .config import GateConfig
from .errors import ToolgateError
from .fallback import PhraseFallbackDetector
from .llm import ScriptedCompletionEngine, get_classifier_backend
from .metrics import JsonlMetricsSink, MetricsCollector, read_metrics_tail
from .models.capability import CapabilityDefinition
from .models.pipeline import PipelineOutcome, PipelineRequest
from .pipeline import PipelineOrchestrator

app = typer.Typer(
    name="toolgate",
    help="toolgate - load agent capabilities only when a request needs them",
    add_completion=False,
)

console = Console()

DEMO_CAPABILITIES = [
    CapabilityDefinition(
        name="send_email",
        description="Send an email message",
        parameters={
            "type": "object",
            "properties": {
                "to": {"type": "string"},
                "subject": {"type": "string"},
                "body": {"type": "string"},
            },
            "required": ["to"],
        },
    ),
    CapabilityDefinition(
        name="search_calendar",
        description="Search calendar events",
        parameters={"type": "object", "properties": {"query": {"type": "string"}}},
    ),
]


def _demo_executor() -> HandlerCapabilityExecutor:
    return HandlerCapabilityExecutor({
        "send_email": lambda to="", subject="", body="": f"Email queued for {to or 'recipient'}",
        "search_calendar": lambda query="": "No events found",
    })


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def classify(
    text: str = typer.Argument(..., help="Message to classify"),
    agent_id: str = typer.Option("cli", "--agent", "-a", help="Agent identifier (cache scope)"),
    engine: str = typer.Option(
        None,
        "--engine",
        help="Classifier engine: auto, fake, openai, anthropic (default: from config)",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show INFO logs"),
):
    """Decide whether a message needs the capability set."""
    _configure_logging(verbose)
    config = GateConfig.load()
    effective_engine = engine or config.classifier.engine

    try:
        backend = get_classifier_backend(effective_engine, config.classifier.model)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    classifier = IntentClassifier(backend, ClassificationCache.from_config(config.cache), config.classifier)
    decision = asyncio.run(classifier.classify(text, agent_id))

    label = "[green]load capabilities[/green]" if decision.requires_capabilities else "[cyan]skip capabilities[/cyan]"
    console.print(f"Decision:   {label}")
    console.print(f"Confidence: {decision.confidence.value}")
    console.print(f"Rationale:  {decision.rationale or '-'}")
    if decision.suggested_capability_names:
        console.print(f"Suggested:  {', '.join(decision.suggested_capability_names)}")
    if decision.degraded:
        console.print("[yellow]Classifier unavailable, fail-safe decision used[/yellow]")
    console.print(f"[dim]engine: {backend.provider_model or backend.engine_name}, {decision.elapsed_ms}ms[/dim]")


@app.command()
def run(
    text: str = typer.Argument(..., help="Inbound user message"),
    agent_id: str = typer.Option("cli", "--agent", "-a", help="Agent identifier"),
    reply: list[str] = typer.Option(
        None,
        "--reply",
        "-r",
        help="Scripted completion reply (repeat for successive calls)",
    ),
    engine: str = typer.Option(None, "--engine", help="Classifier engine (default: from config)"),
    verbose: bool = typer.Option(False, "--verbose", help="Show INFO logs"),
):
    """Run one message through the pipeline with scripted completions.

    Uses the built-in demo capabilities (send_email, search_calendar) and
    replays --reply values as the completion engine's answers.
    """
    _configure_logging(verbose)
    config = GateConfig.load()
    if not config.pipeline.known_capability_names:
        config.pipeline.known_capability_names = [c.name for c in DEMO_CAPABILITIES]

    try:
        backend = get_classifier_backend(engine or config.classifier.engine, config.classifier.model)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    cache = ClassificationCache.from_config(config.cache)
    sink = JsonlMetricsSink(config.metrics.sink_path) if config.metrics.sink_path else None
    metrics = MetricsCollector(window_size=config.metrics.window_size, sink=sink, cache=cache)
    orchestrator = PipelineOrchestrator(
        classifier=IntentClassifier(backend, cache, config.classifier),
        catalog=StaticCapabilityCatalog(DEMO_CAPABILITIES),
        engine=ScriptedCompletionEngine(reply or []),
        executor=_demo_executor(),
        fallback_detector=PhraseFallbackDetector.from_config(config.fallback),
        metrics=metrics,
        config=config,
    )

    request = PipelineRequest(session_id="cli", agent_id=agent_id, message_text=text)
    try:
        outcome = asyncio.run(orchestrator.run(request))
    except ToolgateError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    finally:
        metrics.publish()

    _print_outcome(outcome)


def _print_outcome(outcome: PipelineOutcome) -> None:
    table = Table(title=f"Request {outcome.request_id[:8]}")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")

    table.add_row("Path", outcome.path.value)
    table.add_row("Requires capabilities", str(outcome.decision.requires_capabilities))
    table.add_row("Confidence", outcome.decision.confidence.value)
    table.add_row("Loaded", ", ".join(outcome.loaded_capability_names) or "-")
    table.add_row("Fallback", outcome.fallback_signal or "-")
    table.add_row("Executed", ", ".join(r.name for r in outcome.invocation_results) or "-")
    table.add_row(
        "Timings (ms)",
        f"classify={outcome.timings.classify_ms} load={outcome.timings.load_ms} "
        f"completion={outcome.timings.completion_ms} total={outcome.timings.total_ms}",
    )
    console.print(table)
    console.print(f"\n[bold]Response:[/bold] {outcome.response_text}")


config_app = typer.Typer(help="Configuration commands")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show():
    """Print the effective configuration as TOML."""
    config = GateConfig.load()
    console.print(config.to_toml_str(), markup=False, highlight=False)


metrics_app = typer.Typer(help="Metrics commands")
app.add_typer(metrics_app, name="metrics")


@metrics_app.command("tail")
def metrics_tail(
    path: str = typer.Option(
        None,
        "--path",
        "-p",
        help="Metrics JSONL file (default: TOOLGATE_METRICS_SINK or config)",
    ),
    n: int = typer.Option(10, "--n", help="Number of recent snapshots to display"),
    full: bool = typer.Option(False, "--full", help="Print full snapshots as JSON"),
):
    """Display the last N metrics snapshots.

    Skips malformed lines with warnings.
    """
    sink_path = Path(path) if path else GateConfig.load().metrics.sink_path
    if sink_path is None:
        console.print("[red]Error: no metrics file configured[/red]")
        console.print("[yellow]Pass --path or set TOOLGATE_METRICS_SINK[/yellow]")
        raise typer.Exit(code=1)

    events = read_metrics_tail(sink_path, n=n)
    if not events:
        console.print("[dim]No metrics snapshots[/dim]")
        return

    if full:
        for event in events:
            console.print(json.dumps(event.model_dump(mode="json"), indent=2), markup=False, highlight=False)
        return

    table = Table(title=f"Last {len(events)} Metrics Snapshot(s)")
    table.add_column("Timestamp (UTC)", style="cyan", no_wrap=True)
    table.add_column("Requests", justify="right")
    table.add_column("Cache hit", justify="right", style="green")
    table.add_column("Skip", justify="right", style="magenta")
    table.add_column("Fallback", justify="right", style="yellow")
    table.add_column("Degraded", justify="right", style="red")

    for event in events:
        snap = event.snapshot
        table.add_row(
            event.ts.strftime("%Y-%m-%d %H:%M:%S"),
            str(snap.total_requests),
            f"{snap.cache_hit_rate:.0%}",
            f"{snap.skip_rate:.0%}",
            f"{snap.fallback_rate:.0%}",
            f"{snap.degraded_rate:.0%}",
        )
    console.print(table)


@app.command()
def version():
    """Show toolgate version."""
    from . import __version__
    console.print(f"toolgate v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
