"""
Tests for reporting/report.py - summary counts and Markdown escaping.
"""

import json

from kubeadmit.models import Resource, RuleKind, Severity, Verdict, Violation
from kubeadmit.reporting.report import generate_report, summarize
from kubeadmit.tracker import QuotaTracker


def _rejected(namespace):
    violation = Violation(
        rule_id="q", kind=RuleKind.quota, message="over | quota",
        severity=Severity.high, code="QuotaExceeded",
    )
    return Verdict(accepted=False, violations=(violation,), namespace=namespace, resource_name="web")


def test_summarize_counts_by_kind_and_severity():
    """Test accepted/rejected totals and violation tallies."""
    summary = summarize([Verdict(accepted=True), _rejected("ns")])

    assert summary["total"] == 2
    assert summary["accepted"] == 1
    assert summary["violations_by_kind"] == {"Quota": 1}
    assert summary["violations_by_severity"] == {"high": 1}


def test_pipe_in_namespace_does_not_break_usage_table(tmp_path):
    """Test that namespace names are escaped in the usage table rows."""
    tracker = QuotaTracker()
    tracker.commit("a|b", Resource(namespace="a|b", pod_count=2))

    out = generate_report([Verdict(accepted=True, namespace="a|b")], tracker, str(tmp_path / "r.md"))

    text = out.read_text(encoding="utf-8")
    assert "| a\\|b | 0 | 0 | 2 |" in text
    data = json.loads(out.with_suffix(".json").read_text())
    assert data["usage"]["a|b"]["pod_count"] == 2
