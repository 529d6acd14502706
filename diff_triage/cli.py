"""CLI entry point for the visual diff triage engine."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from diff_triage.baseline.store import FileBaselineStore
from diff_triage.context.loader import load_context
from diff_triage.models.config import Policy
from diff_triage.models.report import RunOutcome
from diff_triage.orchestrator import RunOrchestrator, build_advisor
from diff_triage.reporter.json_report import generate_json_report, load_json_report
from diff_triage.reporter.review import ReviewDecision, apply_review
from diff_triage.stories import load_stories

console = Console()

EXIT_CODES = {RunOutcome.PASS: 0, RunOutcome.FAIL: 1, RunOutcome.ABORTED: 2}
_CATEGORY_STYLE = {"ignore": "dim", "expected": "green", "warning": "yellow", "error": "red"}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_policy(path: str) -> Policy:
    if not Path(path).exists():
        console.print(f"[yellow]Policy file {path} not found, using defaults[/yellow]")
        return Policy()
    return Policy.load(path)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual diff triage: categorize screenshot changes against baselines."""
    setup_logging(verbose)


@cli.command()
@click.option("--output", "-o", default="triage-policy.json", help="Policy file to create")
def init(output: str) -> None:
    """Create a default policy file."""
    path = Path(output)
    if path.exists() and not click.confirm(f"{output} already exists. Overwrite?"):
        return
    Policy().save(path)
    console.print(f"[green]Created {path}[/green]")


@cli.command()
@click.option("--current", "-i", "current_dir", required=True, help="Directory of current story PNGs")
@click.option("--baselines", "-b", "baselines_dir", default=".triage/baselines", help="Baseline store directory")
@click.option("--policy", "-p", "policy_file", default="triage-policy.json", help="Policy file path")
@click.option("--context", "context_file", default=None, help="Context JSON (tokens, PR text, commits)")
@click.option("--repo", "repo_dir", default=None, help="Git repository to read recent commits from")
@click.option("--stories-meta", "meta_file", default=None, help="Per-story metadata JSON")
@click.option("--no-update", is_flag=True, help="Do not write baseline updates")
def run(current_dir: str, baselines_dir: str, policy_file: str, context_file: str | None,
        repo_dir: str | None, meta_file: str | None, no_update: bool) -> None:
    """Compare current screenshots with baselines and triage the changes."""
    policy = _load_policy(policy_file)
    stories = load_stories(Path(current_dir), Path(meta_file) if meta_file else None)
    if not stories:
        console.print(f"[red]No PNG screenshots found in {current_dir}[/red]")
        sys.exit(1)

    def provider():
        return load_context(
            context_file=Path(context_file) if context_file else None,
            repo_dir=Path(repo_dir) if repo_dir else None,
            lookback_days=policy.ai_analysis.lookback_days,
        )

    store = FileBaselineStore(Path(baselines_dir))
    advisor = build_advisor(policy, debug_dir=Path(baselines_dir).parent / "debug")
    orchestrator = RunOrchestrator(
        policy, store,
        context_provider=provider if (context_file or repo_dir) else None,
        advisor=advisor,
        apply_updates=not no_update,
    )
    try:
        report = orchestrator.run(stories)
    finally:
        if advisor is not None:
            advisor.close()

    report_path = Path(policy.report_output_dir) / f"report_{report.run_id}.json"
    generate_json_report(report, report_path)

    table = Table(title=f"Run {report.run_id}")
    table.add_column("Story", style="bold")
    table.add_column("Status")
    table.add_column("Category")
    table.add_column("Regions", justify="right")
    table.add_column("Reason")
    for story in report.stories:
        cat = story.category.value if story.category else "-"
        style = _CATEGORY_STYLE.get(cat, "")
        table.add_row(
            story.story_id, story.status.value,
            f"[{style}]{cat}[/{style}]" if style else cat,
            str(len(story.regions)), story.reason,
        )
    console.print(table)

    color = {"pass": "green", "fail": "red", "aborted": "yellow"}[report.outcome.value]
    console.print(f"[bold {color}]{report.outcome.value.upper()}[/bold {color}] {report.reason}")
    for update in report.baseline_updates:
        scope = "full" if update.full else f"{len(update.regions)} region(s)"
        state = "applied" if update.applied else "requested"
        console.print(f"  baseline {state}: {update.story_id} ({scope}, {update.reason})")
    console.print(f"  JSON report: [blue]{report_path}[/blue]")
    sys.exit(EXIT_CODES[report.outcome])


@cli.command()
@click.option("--report", "-r", "report_file", required=True, help="JSON report from a previous run")
@click.option("--decisions", "-d", "decisions_file", required=True, help="JSON list of review decisions")
@click.option("--current", "-i", "current_dir", required=True, help="Directory of current story PNGs")
@click.option("--baselines", "-b", "baselines_dir", default=".triage/baselines", help="Baseline store directory")
def review(report_file: str, decisions_file: str, current_dir: str, baselines_dir: str) -> None:
    """Apply reviewer decisions (approve, reject, update-token, skip) to a report."""
    run_report = load_json_report(Path(report_file))
    with open(decisions_file) as f:
        decisions = [ReviewDecision.model_validate(d) for d in json.load(f)]

    stories = {s.story_id: s for s in load_stories(Path(current_dir))}
    store = FileBaselineStore(Path(baselines_dir))
    token_updates = []

    for story_report in run_report.stories:
        prefix = f"{story_report.story_id}#"
        mine = [d for d in decisions if d.region_id.startswith(prefix)]
        if not mine:
            continue
        outcome = apply_review(story_report, mine)
        for err in outcome.errors:
            console.print(f"[red]{err}[/red]")
        token_updates.extend(t.model_dump() for t in outcome.token_updates)
        update = outcome.baseline_update
        if update is None:
            console.print(f"{story_report.story_id}: nothing to update")
            continue
        story = stories.get(story_report.story_id)
        if story is None:
            console.print(f"[red]{story_report.story_id}: current screenshot not found[/red]")
            continue
        store.apply_update(update, story.current, run_id=run_report.run_id, revision=story.revision)
        scope = "full refresh" if update.full else f"{len(update.regions)} region(s) patched"
        console.print(f"[green]{story_report.story_id}: baseline {scope}[/green]")

    if token_updates:
        console.print_json(json.dumps({"tokenUpdates": token_updates}))


@cli.group()
def baseline() -> None:
    """Inspect the baseline store."""
    pass


@baseline.command("list")
@click.option("--baselines", "-b", "baselines_dir", default=".triage/baselines", help="Baseline store directory")
def baseline_list(baselines_dir: str) -> None:
    """List stored baselines."""
    store = FileBaselineStore(Path(baselines_dir))
    entries = store.entries()
    if not entries:
        console.print("[yellow]No baselines stored[/yellow]")
        return
    table = Table(title="Baselines")
    table.add_column("Story", style="bold")
    table.add_column("Size")
    table.add_column("Captured")
    table.add_column("Run")
    for e in sorted(entries, key=lambda e: e.story_id):
        table.add_row(e.story_id, f"{e.width}x{e.height}", e.captured_at, e.run_id)
    console.print(table)


if __name__ == "__main__":
    cli()
