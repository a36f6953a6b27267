"""Report generator — produces ``<name>.md`` and ``<name>.json`` for a batch
of admission verdicts.

The Markdown report has a summary header, one row per resource, and a
section per rejected resource listing its violations in verdict order.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from kubeadmit import config
from kubeadmit.models import Verdict
from kubeadmit.tools.utils import utcnow_iso, write_json
from kubeadmit.tracker import QuotaTracker

logger = logging.getLogger("kubeadmit.report")


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def summarize(verdicts: list[Verdict]) -> dict[str, Any]:
    """Counts of accepted / rejected resources and violations by kind and severity."""
    by_kind: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    for verdict in verdicts:
        for v in verdict.violations:
            by_kind[v.kind.value] = by_kind.get(v.kind.value, 0) + 1
            by_severity[v.severity.value] = by_severity.get(v.severity.value, 0) + 1
    accepted = sum(1 for v in verdicts if v.accepted)
    return {
        "total": len(verdicts),
        "accepted": accepted,
        "rejected": len(verdicts) - accepted,
        "violations_by_kind": by_kind,
        "violations_by_severity": by_severity,
    }


# ---------------------------------------------------------------------------
# Markdown sections
# ---------------------------------------------------------------------------

def _cell(text: str, width: int = 120) -> str:
    return text.replace("|", "\\|")[:width]


def _header(summary: dict[str, Any], timestamp: str) -> str:
    return (
        f"# kubeadmit Admission Report\n\n"
        f"| Field | Value |\n"
        f"|-------|-------|\n"
        f"| **Time** | {timestamp} |\n"
        f"| **Resources** | {summary['total']} |\n"
        f"| **Accepted** | {summary['accepted']} |\n"
        f"| **Rejected** | {summary['rejected']} |\n"
    )


def _verdict_table(verdicts: list[Verdict]) -> str:
    if not verdicts:
        return "\n## Verdicts\n\nNo resources evaluated.\n"
    lines = [
        "\n## Verdicts\n",
        "| # | Namespace | Resource | Verdict | First violation |",
        "|---|-----------|----------|---------|-----------------|",
    ]
    for i, v in enumerate(verdicts, 1):
        status = "accepted" if v.accepted else "**rejected**"
        first = f"{v.violations[0].rule_id}: {v.violations[0].code}" if v.violations else ""
        lines.append(
            f"| {i} | {_cell(v.namespace)} | {_cell(v.resource_name or '-')} | "
            f"{status} | {_cell(first, 80)} |"
        )
    return "\n".join(lines) + "\n"


def _violation_section(verdicts: list[Verdict]) -> str:
    rejected = [v for v in verdicts if not v.accepted]
    if not rejected:
        return ""
    lines = ["\n## Violations\n"]
    for v in rejected:
        lines.append(f"### {v.namespace}/{v.resource_name or '-'}\n")
        for violation in v.violations:
            lines.append(
                f"- **{violation.severity.value}** `{violation.rule_id}` "
                f"({violation.kind.value}/{violation.code}): {violation.message}"
            )
        lines.append("")
    return "\n".join(lines) + "\n"


def _usage_section(tracker: QuotaTracker) -> str:
    namespaces = tracker.namespaces()
    if not namespaces:
        return ""
    lines = [
        "\n## Namespace Usage\n",
        "| Namespace | CPU (m) | Memory (bytes) | Pods |",
        "|-----------|---------|----------------|------|",
    ]
    for ns in namespaces:
        u = tracker.usage(ns)
        lines.append(f"| {_cell(ns)} | {u.cpu_millis} | {u.mem_bytes} | {u.pod_count} |")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def generate_report(
    verdicts: list[Verdict],
    tracker: Optional[QuotaTracker] = None,
    out_path: str = config.DEFAULT_OUTPUT,
) -> Path:
    """Write the admission report as Markdown plus a JSON twin.

    Parameters
    ----------
    verdicts:
        Verdicts in the order the resources were admitted.
    tracker:
        Optional tracker whose final namespace usage is included.
    out_path:
        Destination Markdown file; the JSON goes next to it.

    Returns
    -------
    Path
        The written Markdown path.
    """
    summary = summarize(verdicts)
    timestamp = utcnow_iso()

    sections = [
        _header(summary, timestamp),
        _verdict_table(verdicts),
        _violation_section(verdicts),
    ]
    if tracker is not None:
        sections.append(_usage_section(tracker))

    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text("\n".join(sections), encoding="utf-8")
    logger.info("Report written to %s", out)

    report_data: dict[str, Any] = {
        "timestamp": timestamp,
        "summary": summary,
        "verdicts": [v.model_dump(mode="json", by_alias=True) for v in verdicts],
    }
    if tracker is not None:
        report_data["usage"] = {
            ns: tracker.usage(ns).model_dump() for ns in tracker.namespaces()
        }
    json_path = write_json(report_data, out.with_suffix(".json"))
    logger.info("JSON report written to %s", json_path)
    return out
