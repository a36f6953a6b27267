"""Quota Tracker — per-namespace running totals of admitted consumption.

The tracker is an explicit, injectable object: there is no process-wide
instance.  Each namespace has its own re-entrant lock, so concurrent
admissions to the same namespace serialise their check-then-commit while
admissions to different namespaces never wait on each other.

Besides CPU / memory / pod usage, the tracker counts in-flight disruptions
per cohort so that a sequence of admissions against a disruption budget
sees the unavailability already granted.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from pydantic import BaseModel

from kubeadmit.errors import QuotaExceeded
from kubeadmit.models import CohortKey, QuotaSpec, Resource, Rule, RuleKind

logger = logging.getLogger("kubeadmit.tracker")


class NamespaceUsage(BaseModel):
    """Consumption committed to one namespace so far."""
    model_config = {"frozen": True}

    cpu_millis: int = 0
    mem_bytes: int = 0
    pod_count: int = 0

    def plus(self, resource: Resource) -> "NamespaceUsage":
        return NamespaceUsage(
            cpu_millis=self.cpu_millis + resource.cpu_request_millis,
            mem_bytes=self.mem_bytes + resource.mem_request_bytes,
            pod_count=self.pod_count + resource.pod_count,
        )


_ZERO = NamespaceUsage()


class QuotaTracker:
    """Thread-safe per-namespace usage and cohort-disruption counters."""

    def __init__(self) -> None:
        self._usage: dict[str, NamespaceUsage] = {}
        self._disrupted: dict[str, dict[CohortKey, int]] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock(self, namespace: str) -> threading.RLock:
        """Return the lock guarding *namespace*, creating it on first use."""
        with self._registry_lock:
            lk = self._locks.get(namespace)
            if lk is None:
                lk = self._locks[namespace] = threading.RLock()
            return lk

    # ------------------------------------------------------------------
    # Quota usage
    # ------------------------------------------------------------------

    def usage(self, namespace: str) -> NamespaceUsage:
        """Current usage of *namespace* (zero for namespaces never seen)."""
        return self._usage.get(namespace, _ZERO)

    def namespaces(self) -> list[str]:
        return sorted(self._usage)

    def exceeded_dimensions(self, namespace: str, resource: Resource, rule: Rule) -> list[str]:
        """Name every ceiling of *rule* that admitting *resource* would overrun.

        Unset ceilings (``None``) are unlimited; a ceiling of ``0`` is a real
        limit, so any positive request exceeds it.
        """
        spec = rule.spec
        if not isinstance(spec, QuotaSpec):
            return []
        projected = self.usage(namespace).plus(resource)
        exceeded: list[str] = []
        if spec.max_cpu_millis is not None and projected.cpu_millis > spec.max_cpu_millis:
            exceeded.append("maxCpuMillis")
        if spec.max_mem_bytes is not None and projected.mem_bytes > spec.max_mem_bytes:
            exceeded.append("maxMemBytes")
        if spec.max_pods is not None and projected.pod_count > spec.max_pods:
            exceeded.append("maxPods")
        return exceeded

    def projected_exceeds(self, namespace: str, resource: Resource, rule: Rule) -> bool:
        """True iff committing *resource* would exceed any ceiling of *rule*."""
        return bool(self.exceeded_dimensions(namespace, resource, rule))

    def commit(self, namespace: str, resource: Resource, rules: Iterable[Rule] = ()) -> NamespaceUsage:
        """Atomically add *resource*'s consumption to *namespace*.

        *rules* are the quota rules currently active for the namespace.  If
        the commit would overrun any of them, ``QuotaExceeded`` is raised and
        nothing changes.  The evaluator always checks first, so this failure
        only happens when the tracker is called directly without a prior
        ``projected_exceeds`` check.
        """
        with self.lock(namespace):
            for rule in rules:
                if rule.kind is not RuleKind.quota:
                    continue
                exceeded = self.exceeded_dimensions(namespace, resource, rule)
                if exceeded:
                    raise QuotaExceeded(namespace, rule.id, exceeded)
            updated = self.usage(namespace).plus(resource)
            self._usage[namespace] = updated
        logger.debug(
            "Committed %s: cpu=%dm mem=%d pods=%d",
            resource.display_name, updated.cpu_millis, updated.mem_bytes, updated.pod_count,
        )
        return updated

    def reset(self, namespace: str) -> None:
        """Forget all usage and cohort disruptions of *namespace*."""
        with self.lock(namespace):
            self._usage.pop(namespace, None)
            self._disrupted.pop(namespace, None)
        logger.info("Reset tracked usage for namespace %s", namespace)

    # ------------------------------------------------------------------
    # Disruption cohorts
    # ------------------------------------------------------------------

    def disrupted(self, cohort: CohortKey) -> int:
        """Members of *cohort* made unavailable through admitted resources."""
        return self._disrupted.get(cohort.namespace, {}).get(cohort, 0)

    def record_disruption(self, cohort: CohortKey, count: int = 1) -> int:
        with self.lock(cohort.namespace):
            counts = self._disrupted.setdefault(cohort.namespace, {})
            total = counts.get(cohort, 0) + count
            counts[cohort] = total
        return total

    def release_disruption(self, cohort: CohortKey, count: int = 1) -> int:
        """Mark *count* members of *cohort* available again (floor at zero)."""
        with self.lock(cohort.namespace):
            counts = self._disrupted.get(cohort.namespace, {})
            total = max(0, counts.get(cohort, 0) - count)
            if total:
                counts[cohort] = total
            else:
                counts.pop(cohort, None)
        return total
