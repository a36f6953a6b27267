"""Matcher — decides whether a rule applies to a resource and whether the
resource satisfies it.

Each rule kind has one check function with the signature
``(resource, rule, tracker, context) -> Violation | None``.  They are
registered in ``_CHECKS`` and selected by ``rule.kind``.  Checks read the
tracker but never write to it.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional

from kubeadmit import config
from kubeadmit.models import (
    AffinityConstraintSpec,
    CohortKey,
    DisruptionBudgetSpec,
    EvaluationContext,
    MatchExpression,
    NetworkConstraintSpec,
    Operator,
    RequiredLabelsSpec,
    Resource,
    Rule,
    RuleKind,
    SecurityConstraintSpec,
    Violation,
    matches_selector,
)
from kubeadmit.tracker import QuotaTracker

logger = logging.getLogger("kubeadmit.matcher")

Check = Callable[[Resource, Rule, QuotaTracker, EvaluationContext], Optional[Violation]]

_EMPTY_CONTEXT = EvaluationContext()


# ===================================================================
# Applicability
# ===================================================================

def is_applicable(resource: Resource, rule: Rule) -> bool:
    """True iff *rule*'s namespace and label selectors both match *resource*."""
    if rule.namespace_selector != config.WILDCARD and rule.namespace_selector != resource.namespace:
        return False
    return matches_selector(resource.labels, rule.label_selector)


def _violation(rule: Rule, code: str, message: str) -> Violation:
    return Violation(
        rule_id=rule.id,
        kind=rule.kind,
        message=message,
        severity=rule.effective_severity,
        code=code,
    )


# ===================================================================
# Quota
# ===================================================================

def check_quota(
    resource: Resource,
    rule: Rule,
    tracker: QuotaTracker,
    context: EvaluationContext,
) -> Optional[Violation]:
    """Flag admissions that would push namespace usage over a ceiling."""
    exceeded = tracker.exceeded_dimensions(resource.namespace, resource, rule)
    if not exceeded:
        return None
    usage = tracker.usage(resource.namespace)
    spec = rule.spec
    detail = {
        "maxCpuMillis": f"cpu {usage.cpu_millis}m + {resource.cpu_request_millis}m > {spec.max_cpu_millis}m",
        "maxMemBytes": f"memory {usage.mem_bytes} + {resource.mem_request_bytes} > {spec.max_mem_bytes} bytes",
        "maxPods": f"pods {usage.pod_count} + {resource.pod_count} > {spec.max_pods}",
    }
    return _violation(
        rule,
        "QuotaExceeded",
        (
            f"Admitting {resource.display_name} would exceed quota '{rule.id}' in namespace "
            f"'{resource.namespace}' on {', '.join(exceeded)} "
            f"({'; '.join(detail[d] for d in exceeded)})."
        ),
    )


# ===================================================================
# Disruption budget
# ===================================================================

def cohort_of(resource: Resource, rule: Rule) -> Optional[CohortKey]:
    """Cohort the resource belongs to under *rule*, or None if it has none.

    The rule's ``cohortLabel`` wins; the resource's own
    ``podDisruptionLabel`` is the fallback.
    """
    spec = rule.spec
    if not isinstance(spec, DisruptionBudgetSpec):
        return None
    label = spec.cohort_label or resource.pod_disruption_label
    if not label or label not in resource.labels:
        return None
    return CohortKey(resource.namespace, label, resource.labels[label])


def check_disruption_budget(
    resource: Resource,
    rule: Rule,
    tracker: QuotaTracker,
    context: EvaluationContext,
) -> Optional[Violation]:
    """Flag admissions that would leave a cohort under its availability budget.

    The cohort size is live cluster state and comes from *context*; without
    it the rule cannot be judged and is treated as inapplicable.
    """
    spec = rule.spec
    cohort = cohort_of(resource, rule)
    if cohort is None:
        logger.debug("Rule %s: %s has no cohort, skipping", rule.id, resource.display_name)
        return None
    status = context.cohort(cohort)
    if status is None:
        logger.debug("Rule %s: no size known for cohort %s=%s", rule.id, cohort.label, cohort.value)
        return None

    unavailable_after = status.unavailable + tracker.disrupted(cohort) + resource.pod_count
    available_after = status.size - unavailable_after
    where = f"cohort {cohort.label}={cohort.value} in '{cohort.namespace}'"

    if spec.min_available is not None and available_after < spec.min_available:
        return _violation(
            rule,
            "MinAvailableBreached",
            (
                f"Disrupting {resource.display_name} would leave {max(available_after, 0)} of "
                f"{status.size} available in {where}; budget '{rule.id}' requires "
                f"minAvailable={spec.min_available}."
            ),
        )
    if spec.max_unavailable_percent is not None:
        allowed = math.ceil(status.size * spec.max_unavailable_percent / 100)
        if unavailable_after > allowed:
            return _violation(
                rule,
                "MaxUnavailableBreached",
                (
                    f"Disrupting {resource.display_name} would make {unavailable_after} of "
                    f"{status.size} unavailable in {where}; budget '{rule.id}' allows "
                    f"{allowed} ({spec.max_unavailable_percent:g}%)."
                ),
            )
    return None


# ===================================================================
# Security context
# ===================================================================

def check_security_constraint(
    resource: Resource,
    rule: Rule,
    tracker: QuotaTracker,
    context: EvaluationContext,
) -> Optional[Violation]:
    spec: SecurityConstraintSpec = rule.spec
    sc = resource.security_context
    causes: list[tuple[str, str]] = []

    if spec.forbid_run_as_root and sc.run_as_root:
        causes.append(("RunAsRoot", "runs as root"))
    if spec.forbid_privilege_escalation and sc.allow_privilege_escalation:
        causes.append(("PrivilegeEscalation", "allows privilege escalation"))
    if spec.allowed_capabilities is not None:
        extra = sorted(sc.added_capabilities - spec.allowed_capabilities)
        if extra:
            causes.append(("CapabilityNotAllowed", f"adds capabilities not allowed: {', '.join(extra)}"))

    if not causes:
        return None
    return _violation(
        rule,
        causes[0][0],
        f"{resource.display_name} {' and '.join(text for _, text in causes)} (rule '{rule.id}').",
    )


# ===================================================================
# Affinity
# ===================================================================

def expression_covers(offered: MatchExpression, required: MatchExpression) -> bool:
    """True if the resource's *offered* term satisfies the *required* one.

    Equal key, operator and value set always match.  A required ``Exists``
    is also met by an ``In`` on the same key, since ``In`` implies the
    label exists.
    """
    if offered.key != required.key:
        return False
    if offered == required:
        return True
    return required.operator is Operator.exists and offered.operator is Operator.in_


def check_affinity_constraint(
    resource: Resource,
    rule: Rule,
    tracker: QuotaTracker,
    context: EvaluationContext,
) -> Optional[Violation]:
    spec: AffinityConstraintSpec = rule.spec
    missing = [
        required for required in spec.required_match_expressions
        if not any(expression_covers(offered, required) for offered in resource.affinity_requirements)
    ]
    if not missing:
        return None
    return _violation(
        rule,
        "AffinityMissing",
        (
            f"{resource.display_name} lacks required affinity "
            f"{'; '.join(str(m) for m in missing)} (rule '{rule.id}')."
        ),
    )


# ===================================================================
# Network policy / labels
# ===================================================================

def check_network_constraint(
    resource: Resource,
    rule: Rule,
    tracker: QuotaTracker,
    context: EvaluationContext,
) -> Optional[Violation]:
    spec: NetworkConstraintSpec = rule.spec
    if not spec.require_network_policy or resource.namespace in context.network_policy_namespaces:
        return None
    return _violation(
        rule,
        "NetworkPolicyMissing",
        (
            f"Namespace '{resource.namespace}' has no NetworkPolicy; {resource.display_name} "
            f"would run with unrestricted pod-to-pod traffic (rule '{rule.id}')."
        ),
    )


def check_required_labels(
    resource: Resource,
    rule: Rule,
    tracker: QuotaTracker,
    context: EvaluationContext,
) -> Optional[Violation]:
    spec: RequiredLabelsSpec = rule.spec
    missing = sorted(spec.required_labels.difference(resource.labels))
    if not missing:
        return None
    return _violation(
        rule,
        "LabelMissing",
        f"{resource.display_name} is missing required label(s): {', '.join(missing)} (rule '{rule.id}').",
    )


# ===================================================================
# Dispatch
# ===================================================================

_CHECKS: dict[RuleKind, Check] = {
    RuleKind.quota: check_quota,
    RuleKind.disruption_budget: check_disruption_budget,
    RuleKind.security_constraint: check_security_constraint,
    RuleKind.affinity_constraint: check_affinity_constraint,
    RuleKind.network_constraint: check_network_constraint,
    RuleKind.required_labels: check_required_labels,
}


def evaluate(
    resource: Resource,
    rule: Rule,
    tracker: QuotaTracker,
    context: Optional[EvaluationContext] = None,
) -> Optional[Violation]:
    """Evaluate one rule against one resource: zero or one violation."""
    check = _CHECKS[rule.kind]
    return check(resource, rule, tracker, context or _EMPTY_CONTEXT)
