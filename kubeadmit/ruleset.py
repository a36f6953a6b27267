"""Rule Set — immutable rule snapshots and the active-policy holder.

A ``RuleSet`` never changes after construction: ``add`` and ``remove``
return a new snapshot.  ``PolicyStore`` holds the active snapshot and swaps
the reference under a writer lock, so an in-flight admission keeps the
snapshot it started with while writers publish the next one.
"""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from pydantic import ValidationError

from kubeadmit.errors import DuplicateRuleId, InvalidRule, RuleNotFound
from kubeadmit.models import Rule, RuleKind

logger = logging.getLogger("kubeadmit.ruleset")

RuleDescriptor = Union[Rule, Mapping[str, Any]]


def rule_order_key(rule: Rule) -> tuple[int, str]:
    """Descending priority, then ascending id."""
    return (-rule.priority, rule.id)


class RuleSet:
    """Immutable snapshot of policy rules, indexed by kind."""

    __slots__ = ("_rules", "_by_kind", "_ordered")

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        index: dict[str, Rule] = {}
        for rule in rules:
            if rule.id in index:
                raise DuplicateRuleId(rule.id)
            index[rule.id] = rule
        self._rules = MappingProxyType(index)
        self._ordered: tuple[Rule, ...] = tuple(sorted(index.values(), key=rule_order_key))
        self._by_kind: dict[RuleKind, tuple[Rule, ...]] = {
            kind: tuple(r for r in self._ordered if r.kind is kind) for kind in RuleKind
        }

    # --- queries ---------------------------------------------------------

    def rules_of(self, kind: RuleKind | str) -> tuple[Rule, ...]:
        """Rules of *kind* by descending priority, ties by ascending id.

        The returned tuple is finite and can be iterated any number of times.
        """
        return self._by_kind.get(RuleKind(kind), ())

    def get(self, rule_id: str) -> Rule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise RuleNotFound(rule_id) from None

    def ids(self) -> list[str]:
        return sorted(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RuleSet({len(self)} rules)"

    # --- copy-on-write updates ------------------------------------------

    def add(self, rule: Rule) -> "RuleSet":
        """Return a new snapshot with *rule* added."""
        if rule.id in self._rules:
            raise DuplicateRuleId(rule.id)
        return RuleSet((*self._rules.values(), rule))

    def remove(self, rule_id: str) -> "RuleSet":
        """Return a new snapshot without *rule_id*."""
        if rule_id not in self._rules:
            raise RuleNotFound(rule_id)
        return RuleSet(r for r in self._rules.values() if r.id != rule_id)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "spec")
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def load_ruleset(descriptors: Iterable[RuleDescriptor]) -> RuleSet:
    """Validate *descriptors* and build a ``RuleSet``.

    Loading is all-or-nothing: if any descriptor is malformed the whole
    load fails with a single ``InvalidRule`` listing every problem, so one
    bad rule never silently disables the rest of its policy category.
    Duplicate ids raise ``DuplicateRuleId``.
    """
    rules: list[Rule] = []
    problems: list[tuple[str, str]] = []

    for position, descriptor in enumerate(descriptors):
        if isinstance(descriptor, Rule):
            rules.append(descriptor)
            continue
        if not isinstance(descriptor, Mapping):
            problems.append((f"#{position}", f"expected a mapping, got {type(descriptor).__name__}"))
            continue
        rule_id = str(descriptor.get("id", "") or f"#{position}")
        try:
            rules.append(Rule.from_descriptor(descriptor))
        except ValidationError as exc:
            problems.append((rule_id, _describe(exc)))

    if problems:
        logger.warning("Rejected rule set: %d invalid descriptor(s)", len(problems))
        raise InvalidRule(problems)

    ruleset = RuleSet(rules)
    logger.info("Loaded %d rule(s)", len(ruleset))
    return ruleset


# ---------------------------------------------------------------------------
# Active policy holder
# ---------------------------------------------------------------------------

class PolicyStore:
    """Holds the active ``RuleSet`` and replaces it atomically.

    Writers serialise on an internal lock and publish a fresh snapshot by
    swapping one reference.  ``snapshot()`` never blocks.
    """

    def __init__(self, ruleset: Optional[RuleSet] = None) -> None:
        self._current = ruleset if ruleset is not None else RuleSet()
        self._write_lock = threading.Lock()

    def snapshot(self) -> RuleSet:
        return self._current

    def add(self, rule: Rule) -> RuleSet:
        with self._write_lock:
            self._current = self._current.add(rule)
            logger.info("Added rule %s (%s)", rule.id, rule.kind.value)
            return self._current

    def remove(self, rule_id: str) -> RuleSet:
        with self._write_lock:
            self._current = self._current.remove(rule_id)
            logger.info("Removed rule %s", rule_id)
            return self._current

    def replace(self, descriptors: Iterable[RuleDescriptor]) -> RuleSet:
        """Load *descriptors* and make them the active set.

        On any load error the previous set stays active.
        """
        fresh = load_ruleset(descriptors)
        with self._write_lock:
            self._current = fresh
        return fresh
