"""Exception taxonomy for kubeadmit.

Every error here is local and recoverable by the caller.  Policy violations
are *not* errors: they are returned inside a ``Verdict`` and never raised.
"""

from __future__ import annotations


class PolicyError(Exception):
    """Base class for all kubeadmit errors."""


class InvalidRule(PolicyError, ValueError):
    """A rule descriptor is malformed or self-contradictory.

    ``problems`` holds one ``(rule_id, reason)`` pair per offending
    descriptor.  Loading is all-or-nothing, so one ``InvalidRule`` may carry
    several problems.
    """

    def __init__(self, problems: list[tuple[str, str]]) -> None:
        self.problems = list(problems)
        lines = [f"{rule_id or '<unnamed>'}: {reason}" for rule_id, reason in self.problems]
        super().__init__("invalid rule(s): " + "; ".join(lines))


class DuplicateRuleId(PolicyError):
    """A rule with the same ``id`` is already present in the rule set."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"duplicate rule id '{rule_id}'")


class RuleNotFound(PolicyError, LookupError):
    """No rule with the given ``id`` exists in the rule set."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"rule '{rule_id}' not found")


class QuotaExceeded(PolicyError):
    """A direct ``QuotaTracker.commit`` would overrun an active quota ceiling.

    Only reachable by calling the tracker without pre-checking; the
    evaluator always checks before it commits.
    """

    def __init__(self, namespace: str, rule_id: str, dimensions: list[str]) -> None:
        self.namespace = namespace
        self.rule_id = rule_id
        self.dimensions = list(dimensions)
        super().__init__(
            f"commit to namespace '{namespace}' exceeds quota '{rule_id}' "
            f"({', '.join(self.dimensions)})"
        )
