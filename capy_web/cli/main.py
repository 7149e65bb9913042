"""Command-line interface for the Capy Web research engine using Typer and Rich."""

import asyncio
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from capy_web.config.logging import configure_logging, get_logger
from capy_web.config.settings import settings
from capy_web.core.planner_brain import PlannerBrain
from capy_web.core.source_intelligence import SourceIntelligenceEngine
from capy_web.exceptions import CapyWebError
from capy_web.navigation.fetchers import HttpPageFetcher
from capy_web.orchestration.engine import CapyWebEngine, EngineConfig
from capy_web.schemas.research_schema import OperatorMode, ResearchConstraints, ResearchObjective
from capy_web.schemas.session_schema import ResearchResult
from capy_web.telemetry.sinks import JsonlEventSink

__version__ = "0.1.0"

app = typer.Typer(
    help="Capy Web - autonomous research with source trust and confidence-driven stopping",
    add_completion=False,
)

console = Console()

logger = get_logger("cli")


def _collaborator():
    """Gemini collaborator when an API key is configured, else None."""
    if not settings.gemini_api_key:
        return None
    from capy_web.llm.gemini_client import GeminiResearchCollaborator

    return GeminiResearchCollaborator()


def _objective(
    query: str,
    domains: Optional[List[str]],
    threshold: float,
    context: Optional[str],
    mode: Optional[OperatorMode],
    max_pages: Optional[int],
) -> ResearchObjective:
    constraints = None
    if mode is not None or max_pages is not None:
        constraints = ResearchConstraints(mode=mode, max_pages=max_pages)
    return ResearchObjective(
        query=query,
        confidence_requirement=threshold,
        known_domains=domains or [],
        context=context,
        constraints=constraints,
    )


def _render_result(result: ResearchResult) -> None:
    table = Table(title="Answers", show_header=True, header_style="bold magenta")
    table.add_column("Question", style="cyan")
    table.add_column("Answer", style="white")
    table.add_column("Confidence", style="green", width=12)
    table.add_column("Sources", style="yellow", width=8)

    for answer in result.answers:
        value = "-" if answer.answer is None else str(answer.answer)
        table.add_row(
            answer.question,
            value[:200],
            f"{answer.confidence.value} ({answer.confidence_score:.2f})",
            str(len(answer.sources)),
        )
    console.print(table)

    stats = result.stats
    console.print(Panel(
        f"Stop: [bold]{result.stop_condition.reason.value}[/bold] - {result.stop_condition.details}\n"
        f"Confidence: {result.confidence:.1%}\n"
        f"Pages: {stats.pages_visited}  Claims: {stats.claims_found}  "
        f"Verified: {stats.claims_verified}  Contradictions: {stats.contradictions_found}\n"
        f"Cache hits/misses: {stats.cache_hits}/{stats.cache_misses}  "
        f"Paths: {stats.paths_executed} ({stats.paths_terminated_early} terminated)\n"
        f"Time: {stats.total_time_ms / 1000:.1f}s",
        title="Success" if result.success else "Partial result",
        border_style="green" if result.success else "yellow",
    ))


@app.command()
def research(
    query: str = typer.Argument(..., help="Research question or goal"),
    domain: Optional[List[str]] = typer.Option(None, "--domain", "-d", help="Known relevant domain (repeatable)"),
    threshold: float = typer.Option(0.8, "--threshold", "-t", min=0.01, max=1.0, help="Confidence needed to stop"),
    mode: Optional[OperatorMode] = typer.Option(None, "--mode", "-m", help="Operator mode"),
    context: Optional[str] = typer.Option(None, "--context", help="Extra background for planning"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Page budget override"),
    events_file: Optional[str] = typer.Option(None, "--events", help="Write telemetry events as JSON lines"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Run a research session and print the answers."""
    configure_logging("DEBUG" if verbose else None)
    objective = _objective(query, domain, threshold, context, mode, max_pages)
    collaborator = _collaborator()
    if collaborator is None:
        console.print("[yellow]GEMINI_API_KEY not set: keyword planning, no extraction[/yellow]")

    async def run() -> ResearchResult:
        fetcher = HttpPageFetcher()
        engine = CapyWebEngine(config=EngineConfig(), collaborator=collaborator)
        engine.attach_fetcher(fetcher, extractor=collaborator)
        if events_file:
            engine.on_event(JsonlEventSink(events_file))
        try:
            with console.status("[bold cyan]Researching...[/bold cyan]"):
                return await engine.research(objective)
        finally:
            await fetcher.aclose()
            await engine.aclose()

    try:
        result = asyncio.run(run())
    except CapyWebError as e:
        console.print(f"\n[red]✗[/red] {e}")
        logger.error("Research failed", error=str(e))
        raise typer.Exit(1)

    _render_result(result)


@app.command()
def plan(
    query: str = typer.Argument(..., help="Research question or goal"),
    domain: Optional[List[str]] = typer.Option(None, "--domain", "-d", help="Known relevant domain (repeatable)"),
    mode: Optional[OperatorMode] = typer.Option(None, "--mode", "-m", help="Operator mode"),
    context: Optional[str] = typer.Option(None, "--context", help="Extra background for planning"),
) -> None:
    """Print the research plan for a query without visiting any page."""
    configure_logging()
    objective = _objective(query, domain, 0.8, context, mode, None)
    planner = PlannerBrain(SourceIntelligenceEngine(), collaborator=_collaborator())
    research_plan = asyncio.run(planner.generate_plan(objective))

    if not research_plan.is_valid:
        for error in research_plan.validation_errors:
            console.print(f"[red]✗[/red] {error}")
        raise typer.Exit(1)

    questions = Table(title=f"Questions ({research_plan.planned_by})", header_style="bold magenta")
    questions.add_column("ID", style="cyan", width=5)
    questions.add_column("Question")
    questions.add_column("Type", style="yellow")
    questions.add_column("Priority", width=8)
    for question in research_plan.primary_questions:
        questions.add_row(question.id, question.question, question.question_type, str(question.priority))
    console.print(questions)

    paths = Table(title="Execution paths", header_style="bold magenta")
    paths.add_column("Priority", width=8)
    paths.add_column("Domain", style="cyan")
    paths.add_column("Tier", width=5)
    paths.add_column("Expected pages", style="dim")
    tiers = {ranked.domain: ranked.expected_tier for ranked in research_plan.target_domains}
    for path in sorted(research_plan.execution_paths, key=lambda p: -p.priority):
        scope = path.domain_scope[0]
        expectation = research_plan.get_expectation(scope)
        pages = ", ".join(expectation.expected_pages) if expectation else "-"
        paths.add_row(f"{path.priority:g}", scope, str(int(tiers[scope])), pages)
    console.print(paths)

    budgets = research_plan.budgets
    console.print(
        f"[dim]Budgets: {budgets.max_pages} pages, {budgets.max_time_ms / 1000:.0f}s, "
        f"{budgets.max_concurrency} concurrent, floor {budgets.marginal_gain_floor}[/dim]"
    )


@app.command()
def status() -> None:
    """Display configuration."""
    table = Table(title="Capy Web Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", width=20)
    table.add_column("Status", style="green", width=15)
    table.add_column("Details", style="yellow")

    python_version = f"Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    table.add_row("Environment", "✓ Ready", python_version)

    api_status = "✓ Configured" if settings.gemini_api_key else "⚠ Not Configured"
    table.add_row("Gemini API", api_status, settings.gemini_model)

    table.add_row(
        "Defaults",
        settings.default_mode,
        f"{settings.max_pages} pages, {settings.max_time_ms / 1000:.0f}s, parallelism {settings.parallelism}",
    )
    table.add_row(
        "Politeness",
        "✓ robots.txt" if settings.respect_robots_txt else "✗ robots.txt",
        f"{settings.requests_per_second} req/s, {settings.per_domain_delay_ms} ms per domain",
    )
    table.add_row("Cache", "✓ Enabled" if settings.cache_enabled else "✗ Disabled", f"TTL {settings.page_cache_ttl_ms} ms")
    table.add_row("Logging", "✓ Active", f"Level: {settings.log_level}, Format: {settings.log_format}")

    console.print(table)


@app.command()
def version() -> None:
    """Display version information."""
    console.print("[bold]Capy Web[/bold]")
    console.print(f"Version: {__version__}")


if __name__ == "__main__":
    app()
