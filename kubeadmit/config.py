"""kubeadmit configuration — constants and defaults.

All tunables live here so the matcher and evaluator stay free of magic
values.  Override at runtime via environment variables.
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------

# Namespace selector that matches every namespace.
WILDCARD: str = os.getenv("KUBEADMIT_WILDCARD", "*")

# ---------------------------------------------------------------------------
# Default severities per rule kind (used when a rule does not set one)
# ---------------------------------------------------------------------------

DEFAULT_SEVERITY: dict[str, str] = {
    "Quota": os.getenv("KUBEADMIT_SEVERITY_QUOTA", "high"),
    "DisruptionBudget": os.getenv("KUBEADMIT_SEVERITY_DISRUPTION", "high"),
    "SecurityConstraint": os.getenv("KUBEADMIT_SEVERITY_SECURITY", "critical"),
    "AffinityConstraint": os.getenv("KUBEADMIT_SEVERITY_AFFINITY", "medium"),
    "NetworkConstraint": os.getenv("KUBEADMIT_SEVERITY_NETWORK", "medium"),
    "RequiredLabels": os.getenv("KUBEADMIT_SEVERITY_LABELS", "low"),
}

# ---------------------------------------------------------------------------
# Manifest adapter
# ---------------------------------------------------------------------------

# Annotation on a workload naming the label key of its disruption cohort.
DISRUPTION_LABEL_ANNOTATION: str = "kubeadmit.io/disruption-label"

# Namespace assumed for manifests that carry none.
DEFAULT_NAMESPACE: str = "default"

WORKLOAD_KINDS: tuple[str, ...] = (
    "Pod",
    "Deployment",
    "StatefulSet",
    "ReplicaSet",
    "DaemonSet",
    "Job",
)

# ---------------------------------------------------------------------------
# Output defaults
# ---------------------------------------------------------------------------

DEFAULT_OUTPUT: str = os.getenv("KUBEADMIT_DEFAULT_OUTPUT", "admission-report.md")
