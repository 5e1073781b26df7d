"""Typer CLI for vulnsync."""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from vulnsync.config import settings
from vulnsync.credentials import SettingsCredentialProvider, StaticCredentialProvider
from vulnsync.ingest.task import AnalysisTask
from vulnsync.models import AnalysisEvent, Component
from vulnsync.store import VulnerabilityStore

app = typer.Typer(
    name="vulnsync",
    help="Enrich components with vulnerability records from the Snyk REST API.",
)
console = Console()

severity_styles = {
    "CRITICAL": "bold red",
    "HIGH": "red",
    "MEDIUM": "yellow",
    "LOW": "cyan",
    "UNASSIGNED": "dim",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def load_components(path: Path) -> list[Component]:
    """Read components from a JSON list or a ``{"components": [...]}`` document."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("components", [])
    return [Component(**item) for item in data]


@app.command()
def analyze(
    components_file: Path = typer.Argument(help="JSON file listing components (uuid, name, purl)"),
    db_path: str = typer.Option("", "--db", help="SQLite store path (default: VULNSYNC_DB_PATH)"),
    token: str = typer.Option("", "--token", envvar="SNYK_TOKEN", help="Snyk API token"),
    org_id: str = typer.Option("", "--org", help="Snyk organization id (default: VULNSYNC_ORG_ID)"),
    api_version: str = typer.Option("", "--api-version", help="Snyk REST API version tag"),
    output_json: bool = typer.Option(False, "--json", help="Print the run summary as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Look up components and synchronize their vulnerabilities into the store."""
    _configure_logging(verbose)
    components = load_components(components_file)

    config = settings.model_copy(update={
        "org_id": org_id or settings.org_id,
        "api_version": api_version or settings.api_version,
    })
    store = VulnerabilityStore(db_path or config.db_path)
    credentials = StaticCredentialProvider(token) if token else SettingsCredentialProvider(config)
    task = AnalysisTask(store, credentials=credentials, config=config)
    try:
        summary = asyncio.run(task.inform(AnalysisEvent(components=components)))
    finally:
        store.close()

    if summary is None:
        console.print("[red]Analysis did not run[/red] (disabled or misconfigured, see log).")
        raise typer.Exit(code=1)

    if output_json:
        console.print(summary.model_dump_json(indent=2))
        return

    for err in summary.errors:
        console.print(f"[yellow]Warning:[/yellow] {err}")
    console.print(
        f"Analyzed [bold]{summary.components_analyzed}[/bold] of {summary.components_submitted} "
        f"component(s); synchronized [bold]{summary.vulnerabilities_synchronized}[/bold] "
        f"vulnerability record(s) in {summary.elapsed_seconds:.1f}s."
    )


@app.command()
def show(
    component_uuid: str = typer.Argument(help="Component uuid"),
    db_path: str = typer.Option("", "--db", help="SQLite store path (default: VULNSYNC_DB_PATH)"),
):
    """Show the vulnerabilities stored for a component."""
    store = VulnerabilityStore(db_path or settings.db_path)
    try:
        with store.session() as session:
            vulnerabilities = session.get_component_vulnerabilities(component_uuid)
    finally:
        store.close()

    if not vulnerabilities:
        console.print(f"[green]No vulnerabilities recorded[/green] for {component_uuid}.")
        return

    table = Table(title=f"{len(vulnerabilities)} vulnerabilities for {component_uuid}")
    table.add_column("Severity", style="bold")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Affected ranges")

    for vuln in vulnerabilities:
        style = severity_styles.get(vuln.severity.value, "")
        ranges = []
        for vs in vuln.vulnerable_software:
            if vs.version:
                ranges.append(f"={vs.version}")
                continue
            lower = f">={vs.start_including}" if vs.start_including else (
                f">{vs.start_excluding}" if vs.start_excluding else "")
            upper = f"<={vs.end_including}" if vs.end_including else (
                f"<{vs.end_excluding}" if vs.end_excluding else "")
            ranges.append(", ".join(part for part in (lower, upper) if part))
        table.add_row(
            f"[{style}]{vuln.severity.value}[/{style}]",
            vuln.vuln_id or "",
            vuln.title or "",
            "\n".join(ranges),
        )

    console.print(table)


if __name__ == "__main__":
    app()
