"""Evaluator — admits or rejects resources against the active rules.

Pipeline per resource::

    snapshot rules → applicable rules (per kind) → order by priority/id
        → evaluate under namespace lock → verdict → commit if accepted

Violations never short-circuit: every applicable rule is evaluated and all
violations are reported, highest priority first.  Kinds do not take
precedence over each other.

Usage::

    tracker = QuotaTracker()
    ruleset = load_ruleset(descriptors)
    verdict = admit(resource, ruleset, tracker)
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from kubeadmit.matcher import cohort_of, evaluate, is_applicable
from kubeadmit.models import CohortKey, EvaluationContext, Resource, Rule, RuleKind, Verdict, Violation
from kubeadmit.ruleset import PolicyStore, RuleSet, load_ruleset, rule_order_key
from kubeadmit.tracker import QuotaTracker

logger = logging.getLogger("kubeadmit.evaluator")

Rules = Union[RuleSet, PolicyStore]

__all__ = ["AdmissionEvaluator", "admit", "recheck", "reset_namespace", "load_ruleset"]


class AdmissionEvaluator:
    """Evaluates resources against a rule set and a shared quota tracker.

    *rules* may be a fixed ``RuleSet`` or a ``PolicyStore`` whose active set
    can be replaced while admissions are running; each call works on one
    snapshot from start to finish.
    """

    def __init__(self, rules: Rules, tracker: Optional[QuotaTracker] = None) -> None:
        self.rules = rules
        self.tracker = tracker if tracker is not None else QuotaTracker()

    def _snapshot(self) -> RuleSet:
        if isinstance(self.rules, PolicyStore):
            return self.rules.snapshot()
        return self.rules

    def applicable_rules(self, resource: Resource, ruleset: Optional[RuleSet] = None) -> list[Rule]:
        """All rules that apply to *resource*, highest priority first."""
        ruleset = ruleset if ruleset is not None else self._snapshot()
        applicable = [
            rule
            for kind in RuleKind
            for rule in ruleset.rules_of(kind)
            if is_applicable(resource, rule)
        ]
        applicable.sort(key=rule_order_key)
        return applicable

    def admit(self, resource: Resource, context: Optional[EvaluationContext] = None) -> Verdict:
        """Evaluate *resource* and, when accepted, commit its consumption."""
        return self._run(resource, context, commit=True)

    def recheck(self, resource: Resource, context: Optional[EvaluationContext] = None) -> Verdict:
        """Evaluate *resource* without touching tracker state."""
        return self._run(resource, context, commit=False)

    def _run(self, resource: Resource, context: Optional[EvaluationContext], commit: bool) -> Verdict:
        context = context or EvaluationContext()
        applicable = self.applicable_rules(resource, self._snapshot())

        with self.tracker.lock(resource.namespace):
            violations: list[Violation] = []
            for rule in applicable:
                violation = evaluate(resource, rule, self.tracker, context)
                if violation is not None:
                    violations.append(violation)

            accepted = not violations
            committed = False
            if accepted and commit:
                committed = self._commit(resource, applicable, context)

        verdict = Verdict(
            accepted=accepted,
            violations=tuple(violations),
            namespace=resource.namespace,
            resource_name=resource.name,
            committed=committed,
        )
        if accepted:
            logger.debug(
                "Admitted %s (%d applicable rule(s))", resource.display_name, len(applicable)
            )
        else:
            logger.info(
                "Rejected %s: %s",
                resource.display_name,
                ", ".join(f"{v.rule_id}[{v.code}]" for v in violations),
            )
        return verdict

    def _commit(self, resource: Resource, applicable: list[Rule], context: EvaluationContext) -> bool:
        """Apply the side effects of an accepted admission; caller holds the lock."""
        committed = False
        quota_rules = [r for r in applicable if r.kind is RuleKind.quota]
        if quota_rules:
            self.tracker.commit(resource.namespace, resource, quota_rules)
            committed = True

        cohorts: set[CohortKey] = set()
        for rule in applicable:
            if rule.kind is not RuleKind.disruption_budget:
                continue
            cohort = cohort_of(resource, rule)
            if cohort is not None and context.cohort(cohort) is not None:
                cohorts.add(cohort)
        for cohort in sorted(cohorts):
            self.tracker.record_disruption(cohort, resource.pod_count)
            committed = True
        return committed


# ---------------------------------------------------------------------------
# Functional API
# ---------------------------------------------------------------------------

def admit(
    resource: Resource,
    rules: Rules,
    tracker: QuotaTracker,
    context: Optional[EvaluationContext] = None,
) -> Verdict:
    """Admit *resource*; accepted admissions update *tracker* exactly once."""
    return AdmissionEvaluator(rules, tracker).admit(resource, context)


def recheck(
    resource: Resource,
    rules: Rules,
    tracker: QuotaTracker,
    context: Optional[EvaluationContext] = None,
) -> Verdict:
    """Idempotent evaluation: same inputs, same verdict, no commit."""
    return AdmissionEvaluator(rules, tracker).recheck(resource, context)


def reset_namespace(tracker: QuotaTracker, namespace: str) -> None:
    """Drop tracked usage for a namespace that was deleted externally."""
    tracker.reset(namespace)
