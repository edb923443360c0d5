"""Command-line interface for SkyGig."""

import typer
from rich.console import Console
from rich.table import Table
from typing import Optional

from skygig.config import settings

app = typer.Typer(
    name="skygig",
    help="SkyGig - job, applicant and messaging lifecycle for drone gigs",
    add_completion=False,
)
console = Console()


@app.command()
def serve(
    host: str = typer.Option(settings.host, help="Host to bind to"),
    port: int = typer.Option(settings.port, help="Port to bind to"),
    reload: bool = typer.Option(settings.reload, help="Enable auto-reload"),
) -> None:
    """Start the API server."""
    import uvicorn

    console.print(f"🚀 Starting SkyGig on {host}:{port}")
    uvicorn.run(
        "skygig.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


@app.command()
def config() -> None:
    """Show current configuration."""
    table = Table(title="SkyGig Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Debug Mode", str(settings.debug))
    table.add_row("Log Level", settings.log_level)
    table.add_row("Closing Soon (days)", str(settings.closing_soon_days))
    table.add_row("Title Length", f"{settings.title_min_length}-{settings.title_max_length}")
    table.add_row("Min Description Words", str(settings.description_min_words))
    table.add_row("Notification Dispatch", settings.notification_dispatch)
    table.add_row("User Header", settings.user_header)

    console.print(table)


@app.command()
def demo(
    scenario: Optional[str] = typer.Argument(None, help="Scenario to run (all if omitted)"),
) -> None:
    """Run scripted marketplace scenarios."""
    from skygig.demo.scenarios import demo_runner

    if scenario is None:
        selected = demo_runner.get_all_scenarios()
    else:
        found = demo_runner.get_scenario(scenario)
        if found is None:
            names = ", ".join(s.name for s in demo_runner.get_all_scenarios())
            console.print(f"❌ Unknown scenario '{scenario}'. Available: {names}")
            raise typer.Exit(code=1)
        selected = [found]

    for item in selected:
        console.print(f"\n[bold cyan]{item.name}[/bold cyan] - {item.description}")
        for line in demo_runner.run(item):
            console.print(f"  • {line}")


@app.command()
def version() -> None:
    """Show version information."""
    from skygig import __version__
    console.print(f"SkyGig v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
