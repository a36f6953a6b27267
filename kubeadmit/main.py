"""kubeadmit CLI — evaluate workload manifests against cluster policy.

Pipeline::

    rules file → RuleSet → admit each resource (shared tracker) → verdicts → report

Usage::

    python -m kubeadmit.main check policy.yaml workloads/*.yaml --output report.md
    python -m kubeadmit.main rules policy.yaml
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from kubeadmit.errors import PolicyError
from kubeadmit.models import EvaluationContext, Resource, Verdict
from kubeadmit.ruleset import RuleSet, load_ruleset
from kubeadmit.tools.utils import console, load_documents, rprint
from kubeadmit.tracker import QuotaTracker

# ---------------------------------------------------------------------------
# Typer application
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="kubeadmit",
    help="kubeadmit — admission-time Kubernetes policy evaluator",
    add_completion=False,
)

EXIT_REJECTED = 1
EXIT_INVALID_INPUT = 2


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _setup_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Input loading
# ---------------------------------------------------------------------------

def _load_rules(path: Path) -> RuleSet:
    from kubeadmit.tools.manifests import to_rule_descriptors

    try:
        return load_ruleset(to_rule_descriptors(load_documents(path)))
    except (PolicyError, ValueError) as exc:
        rprint(f"[bold red]✘ Invalid rules in {path}:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_INVALID_INPUT)


def _load_resources(paths: list[Path]) -> list[Resource]:
    from kubeadmit.tools.manifests import is_scaled_to_zero, to_resource

    resources: list[Resource] = []
    for path in paths:
        try:
            for doc in load_documents(path):
                if isinstance(doc, dict) and is_scaled_to_zero(doc):
                    name = (doc.get("metadata") or {}).get("name", "unknown")
                    rprint(f"[yellow]⚠ Skipping {escape(str(doc.get('kind')))}/{escape(str(name))}: 0 replicas[/yellow]")
                    continue
                resources.append(to_resource(doc))
        except ValueError as exc:
            rprint(f"[bold red]✘ Invalid resource in {path}:[/bold red] {escape(str(exc))}")
            raise typer.Exit(code=EXIT_INVALID_INPUT)
    return resources


def _load_context(path: Optional[Path]) -> EvaluationContext:
    from kubeadmit.tools.manifests import context_from_documents

    if path is None:
        return EvaluationContext()
    try:
        return context_from_documents(load_documents(path))
    except ValueError as exc:
        rprint(f"[bold red]✘ Invalid context in {path}:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_INVALID_INPUT)


def _usage_table(tracker: QuotaTracker) -> Table:
    table = Table(title="Namespace usage")
    table.add_column("Namespace")
    table.add_column("CPU (m)", justify="right")
    table.add_column("Memory (bytes)", justify="right")
    table.add_column("Pods", justify="right")
    for ns in tracker.namespaces():
        u = tracker.usage(ns)
        table.add_row(escape(ns), str(u.cpu_millis), str(u.mem_bytes), str(u.pod_count))
    return table


def _verdict_table(verdicts: list[Verdict]) -> Table:
    table = Table(title="Admission verdicts")
    table.add_column("#", justify="right")
    table.add_column("Namespace")
    table.add_column("Resource")
    table.add_column("Verdict")
    table.add_column("Violations")
    for i, v in enumerate(verdicts, 1):
        status = "[green]accepted[/green]" if v.accepted else "[bold red]rejected[/bold red]"
        detail = "\n".join(
            escape(f"[{x.severity.value}] {x.rule_id}: {x.message}") for x in v.violations
        )
        table.add_row(str(i), escape(v.namespace), escape(v.resource_name or "-"), status, detail)
    return table


# ---------------------------------------------------------------------------
# check: the primary command
# ---------------------------------------------------------------------------

@app.command()
def check(
    rules: Path = typer.Argument(
        ...,
        exists=True, dir_okay=False,
        help="Rule file (kubeadmit descriptors, ResourceQuota, PodDisruptionBudget).",
    ),
    resources: list[Path] = typer.Argument(
        ...,
        exists=True, dir_okay=False,
        help="Workload manifests or resource descriptors.",
    ),
    context: Optional[Path] = typer.Option(
        None,
        "--context", "-c",
        help="Cohort sizes and NetworkPolicy objects for the evaluation context.",
    ),
    recheck_only: bool = typer.Option(
        False,
        "--recheck",
        help="Evaluate without committing usage between resources.",
    ),
    output: Optional[str] = typer.Option(
        None,
        "--output", "-o",
        help="Write a Markdown report (plus .json) to this path.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug logging.",
    ),
) -> None:
    """Admit every resource in order and report the verdicts."""
    _setup_logging(debug)
    from kubeadmit.evaluator import AdmissionEvaluator
    from kubeadmit.reporting.report import generate_report, summarize

    ruleset = _load_rules(rules)
    ctx = _load_context(context)
    candidates = _load_resources(resources)
    rprint(f"[bold cyan]▶ {len(ruleset)} rule(s), {len(candidates)} resource(s)[/bold cyan]")

    evaluator = AdmissionEvaluator(ruleset)
    run = evaluator.recheck if recheck_only else evaluator.admit
    verdicts = [run(resource, ctx) for resource in candidates]

    console.print(_verdict_table(verdicts))
    if evaluator.tracker.namespaces():
        console.print(_usage_table(evaluator.tracker))

    if output:
        report_path = generate_report(verdicts, evaluator.tracker, out_path=output)
        rprint(f"[bold green]✔ Report written to {report_path}[/bold green]")

    summary = summarize(verdicts)
    rprint(
        f"\n  Accepted: [bold]{summary['accepted']}[/bold]  "
        f"Rejected: [bold]{summary['rejected']}[/bold]"
    )
    if summary["rejected"]:
        raise typer.Exit(code=EXIT_REJECTED)


# ---------------------------------------------------------------------------
# rules: inspect a rule file
# ---------------------------------------------------------------------------

@app.command(name="rules")
def list_rules(
    rules: Path = typer.Argument(..., exists=True, dir_okay=False, help="Rule file to load."),
) -> None:
    """Validate a rule file and list its rules in evaluation order."""
    _setup_logging(debug=False)
    ruleset = _load_rules(rules)

    table = Table(title=f"{len(ruleset)} rule(s)")
    table.add_column("Priority", justify="right")
    table.add_column("Id")
    table.add_column("Kind")
    table.add_column("Namespace")
    table.add_column("Severity")
    for rule in ruleset:
        table.add_row(
            str(rule.priority),
            rule.id,
            rule.kind.value,
            rule.namespace_selector,
            rule.effective_severity.value,
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
