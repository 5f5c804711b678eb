import asyncio
import json
import os
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from lumeo.common import config
from lumeo.common.errors import LumeoError
from lumeo.common.models.jobs import JobEnvelope, JobOutcome, ProviderID, RemoteJobState
from lumeo.common.storage.client import create_persistence
from lumeo.engine.core import Orchestrator

app = typer.Typer(help="lumeoctl: submit and track Lumeo generation jobs")
console = Console()

# Configuration
PERSISTENCE_BACKEND = config.PERSISTENCE_BACKEND

STATUS_STYLES = {
    "queued": "dim",
    "starting": "yellow",
    "processing": "cyan",
    "succeeded": "bold green",
    "failed": "bold red",
    "canceled": "magenta",
}

@app.callback()
def main(
    persistence: str = typer.Option(None, envvar="LUMEO_PERSISTENCE", help="History backend: sqlite, minio or memory")
):
    global PERSISTENCE_BACKEND
    if persistence:
        PERSISTENCE_BACKEND = persistence

def build_orchestrator() -> Orchestrator:
    orchestrator = Orchestrator(persistence=create_persistence(PERSISTENCE_BACKEND))
    orchestrator.restore()
    return orchestrator

def run_with(orchestrator: Orchestrator, coro):
    async def runner():
        try:
            return await coro
        finally:
            await orchestrator.close()
    try:
        return asyncio.run(runner())
    finally:
        orchestrator.snapshot()

def parse_params(params: Optional[List[str]]) -> dict:
    """`key=value` pairs; values are read as JSON when they parse, else as strings."""
    parsed = {}
    for item in params or []:
        if "=" not in item:
            raise typer.BadParameter(f"Expected key=value, got {item!r}")
        key, raw = item.split("=", 1)
        try:
            parsed[key] = json.loads(raw)
        except ValueError:
            parsed[key] = raw
    return parsed

def fmt_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"

def print_progress(state: RemoteJobState):
    progress = f" {state.progress_percent:.0f}%" if state.progress_percent is not None else ""
    console.print(f"[dim]{state.id}[/dim] {fmt_status(state.status.value)}{progress}")

def print_outcome(outcome: JobOutcome):
    if outcome.succeeded:
        console.print(f"[bold green]Success![/bold green] Job {outcome.state.id}")
        for output in outcome.state.outputs:
            console.print(f"  {output}")
        return
    if outcome.cancelled:
        console.print("[magenta]Watch cancelled[/magenta]")
        return
    console.print(f"[bold red]Failed! {outcome.error}[/bold red]")
    raise typer.Exit(code=1)

def submit(provider: ProviderID, parameters: dict):
    try:
        envelope = JobEnvelope(provider_id=provider, parameters=parameters)
    except ValueError as e:
        console.print(f"[bold red]Invalid parameters:[/bold red] {e}")
        raise typer.Exit(code=1)

    console.print(f"Submitting to [bold]{provider.value}[/bold]...")
    orchestrator = build_orchestrator()
    outcome = run_with(orchestrator, orchestrator.run_job(envelope, on_progress=print_progress))
    print_outcome(outcome)

@app.command()
def generate(
    prompt: str,
    provider: ProviderID = typer.Option(ProviderID.REPLICATE, "--provider", "-P", help="Image provider"),
    param: Optional[List[str]] = typer.Option(None, "--param", "-p", help="Extra input as key=value"),
    workflow: Optional[str] = typer.Option(None, "--workflow", help="ComfyUI workflow JSON file"),
):
    """Generate images from a prompt"""
    parameters = parse_params(param)
    parameters["prompt"] = prompt
    if workflow:
        if not os.path.exists(workflow):
            console.print(f"[bold red]File {workflow} not found![/bold red]")
            raise typer.Exit(code=1)
        with open(workflow, "r") as f:
            parameters["workflow"] = json.load(f)
    submit(provider, parameters)

@app.command()
def chat(
    prompt: str,
    model: Optional[str] = typer.Option(None, help="Override the chat model"),
    system: Optional[str] = typer.Option(None, help="System prompt"),
):
    """Send one prompt to the chat provider"""
    parameters = {"prompt": prompt}
    if model:
        parameters["model"] = model
    if system:
        parameters["system_prompt"] = system
    submit(ProviderID.CHATGPT, parameters)

@app.command()
def history():
    """List stored job responses"""
    orchestrator = build_orchestrator()
    entries = orchestrator.history()
    if not entries:
        console.print("[dim]No history yet.[/dim]")
        return

    table = Table(title="Job History")
    table.add_column("ID", style="cyan")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Outputs")

    for state in entries:
        table.add_row(
            state.id,
            state.provider_id.value if state.provider_id else "-",
            fmt_status(state.status.value),
            f"{state.progress_percent:.0f}%" if state.progress_percent is not None else "-",
            "\n".join(state.outputs) or "-",
        )
    console.print(table)

@app.command()
def payloads():
    """Show request bodies sent in the current session"""
    orchestrator = build_orchestrator()
    entries = orchestrator.payloads.entries()
    if not entries:
        console.print("[dim]No payloads recorded.[/dim]")
        return
    for entry in entries:
        console.print_json(entry)

@app.command()
def clear():
    """Clear job history and payloads"""
    orchestrator = build_orchestrator()
    removed = orchestrator.clear_history()
    orchestrator.snapshot()
    console.print(f"Cleared {removed} history entries.")

@app.command()
def cancel(job_id: str):
    """Ask the provider to cancel a job"""
    orchestrator = build_orchestrator()
    try:
        state = run_with(orchestrator, orchestrator.cancel_job(job_id))
    except LumeoError as e:
        console.print(f"[bold red]Cancel failed:[/bold red] {e}")
        raise typer.Exit(code=1)
    console.print(f"Job {state.id}: {fmt_status(state.status.value)}")

@app.command()
def status(job_id: str, refresh: bool = typer.Option(False, "--refresh", "-r", help="Poll the provider once")):
    """Show the stored state of a job"""
    orchestrator = build_orchestrator()
    try:
        if refresh:
            state = run_with(orchestrator, orchestrator.refresh_job(job_id))
        else:
            state = orchestrator.get_job(job_id)
    except LumeoError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)
    console.print_json(state.model_dump_json())

if __name__ == "__main__":
    app()
