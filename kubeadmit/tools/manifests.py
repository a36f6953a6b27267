"""Manifest adapter — turns parsed Kubernetes objects into kubeadmit inputs.

Workloads (Pod, Deployment, StatefulSet, ReplicaSet, DaemonSet, Job) become
``Resource`` objects; ResourceQuota and PodDisruptionBudget objects become
rule descriptors; NetworkPolicy objects feed the evaluation context.
Documents without ``apiVersion`` are taken to be kubeadmit descriptors
already and are passed through.

Usage::

    docs = load_documents("deploy.yaml")
    resources = [to_resource(d) for d in docs]
"""

from __future__ import annotations

import logging
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from kubeadmit import config
from kubeadmit.errors import InvalidRule
from kubeadmit.models import (
    CohortStatus,
    EvaluationContext,
    MatchExpression,
    Operator,
    Resource,
    SecurityContext,
)

logger = logging.getLogger("kubeadmit.manifests")

PRIORITY_ANNOTATION = "kubeadmit.io/priority"


# ---------------------------------------------------------------------------
# Quantities
# ---------------------------------------------------------------------------

_MEMORY_SUFFIXES: dict[str, int] = {
    "Ki": 1024,
    "Mi": 1024 ** 2,
    "Gi": 1024 ** 3,
    "Ti": 1024 ** 4,
    "Pi": 1024 ** 5,
    "Ei": 1024 ** 6,
    "k": 10 ** 3,
    "K": 10 ** 3,
    "M": 10 ** 6,
    "G": 10 ** 9,
    "T": 10 ** 12,
    "P": 10 ** 15,
    "E": 10 ** 18,
}


def _decimal(text: str, original: Any) -> Decimal:
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"invalid quantity {original!r}") from None
    if number < 0:
        raise ValueError(f"negative quantity {original!r}")
    return number


def _ceil(number: Decimal) -> int:
    return int(number.to_integral_value(rounding=ROUND_CEILING))


def parse_cpu_millis(value: str | int | float | None) -> int:
    """Convert a K8s CPU quantity (``'500m'``, ``'2'``, ``0.5``) to millicores.

    Fractions of a millicore round up, as the API server does.
    """
    if value is None:
        return 0
    s = str(value).strip()
    if s.endswith("m"):
        return _ceil(_decimal(s[:-1], value))
    return _ceil(_decimal(s, value) * 1000)


def parse_memory_bytes(value: str | int | float | None) -> int:
    """Convert a K8s memory quantity (``'512Mi'``, ``'1G'``, ``'1e9'``) to bytes."""
    if value is None:
        return 0
    s = str(value).strip()
    for suffix in sorted(_MEMORY_SUFFIXES, key=len, reverse=True):
        if s.endswith(suffix):
            return _ceil(_decimal(s[: -len(suffix)], value) * _MEMORY_SUFFIXES[suffix])
    if s.endswith("m"):
        return _ceil(_decimal(s[:-1], value) / 1000)
    return _ceil(_decimal(s, value))


# ---------------------------------------------------------------------------
# Workloads → Resource
# ---------------------------------------------------------------------------

def _pod_template(doc: dict[str, Any]) -> tuple[dict[str, Any], dict[str, str], int]:
    """Return ``(pod_spec, pod_labels, replicas)`` for a workload manifest."""
    kind = doc.get("kind")
    meta = doc.get("metadata") or {}
    spec = doc.get("spec") or {}
    if kind == "Pod":
        return spec, dict(meta.get("labels") or {}), 1

    template = spec.get("template") or {}
    labels = (template.get("metadata") or {}).get("labels") or meta.get("labels") or {}
    if kind == "Job":
        replicas = spec.get("parallelism")
    elif kind == "DaemonSet":
        replicas = 1  # one pod per node; node count is not known here
    else:
        replicas = spec.get("replicas")
    return template.get("spec") or {}, dict(labels), 1 if replicas is None else int(replicas)


def is_scaled_to_zero(doc: dict[str, Any]) -> bool:
    """True for a workload manifest that asks for no pods at all."""
    if doc.get("kind") not in config.WORKLOAD_KINDS:
        return False
    _, _, replicas = _pod_template(doc)
    return replicas == 0


def _container_resources(ctr: dict[str, Any]) -> tuple[int, Optional[int], int, Optional[int]]:
    """Requests and limits of one container; ``None`` limit = unbounded.

    A missing request defaults to the limit, as in the API server.
    """
    res = ctr.get("resources") or {}
    requests = res.get("requests") or {}
    limits = res.get("limits") or {}
    cpu_lim = parse_cpu_millis(limits["cpu"]) if "cpu" in limits else None
    mem_lim = parse_memory_bytes(limits["memory"]) if "memory" in limits else None
    cpu_req = parse_cpu_millis(requests["cpu"]) if "cpu" in requests else (cpu_lim or 0)
    mem_req = parse_memory_bytes(requests["memory"]) if "memory" in requests else (mem_lim or 0)
    return cpu_req, cpu_lim, mem_req, mem_lim


def _effective(values: list[int], init_values: list[int]) -> int:
    """Pod-level amount: sum over containers, at least the largest init container."""
    return max(sum(values), max(init_values, default=0))


def _effective_limit(values: list[Optional[int]], init_values: list[Optional[int]]) -> int:
    if any(v is None for v in values) or any(v is None for v in init_values):
        return 0
    return _effective(values, init_values)  # type: ignore[arg-type]


def _security_context(pod_spec: dict[str, Any]) -> SecurityContext:
    """Fold pod- and container-level security contexts into one summary.

    Kubernetes defaults apply: a container may run as root unless it sets a
    non-zero ``runAsUser`` or ``runAsNonRoot: true``, and privilege
    escalation is allowed unless explicitly disabled.
    """
    pod_sc = pod_spec.get("securityContext") or {}
    run_as_root = False
    escalation = False
    caps: set[str] = set()

    for ctr in [*(pod_spec.get("initContainers") or []), *(pod_spec.get("containers") or [])]:
        sc = ctr.get("securityContext") or {}
        user = sc.get("runAsUser", pod_sc.get("runAsUser"))
        non_root = sc.get("runAsNonRoot", pod_sc.get("runAsNonRoot"))
        if user == 0 or (user is None and non_root is not True):
            run_as_root = True
        if sc.get("privileged") is True or sc.get("allowPrivilegeEscalation", True) is not False:
            escalation = True
        caps.update(str(c) for c in ((sc.get("capabilities") or {}).get("add") or []))

    return SecurityContext(
        run_as_root=run_as_root,
        allow_privilege_escalation=escalation,
        added_capabilities=frozenset(caps),
    )


def _affinity(pod_spec: dict[str, Any]) -> tuple[MatchExpression, ...]:
    """``nodeSelector`` entries and required node-affinity terms, in order."""
    supported = {op.value for op in Operator}
    found: list[MatchExpression] = []

    for key, value in (pod_spec.get("nodeSelector") or {}).items():
        found.append(MatchExpression(key=key, operator=Operator.in_, values=(str(value),)))

    node_affinity = (pod_spec.get("affinity") or {}).get("nodeAffinity") or {}
    required = node_affinity.get("requiredDuringSchedulingIgnoredDuringExecution") or {}
    for term in required.get("nodeSelectorTerms") or []:
        for expr in term.get("matchExpressions") or []:
            if expr.get("operator") not in supported:
                logger.debug("Skipping unsupported affinity operator %s", expr.get("operator"))
                continue
            found.append(MatchExpression(
                key=expr.get("key", ""),
                operator=expr["operator"],
                values=expr.get("values") or (),
            ))

    unique: list[MatchExpression] = []
    for expr in found:
        if expr not in unique:
            unique.append(expr)
    return tuple(unique)


def resource_from_manifest(doc: dict[str, Any]) -> Resource:
    """Build a ``Resource`` from a workload manifest.

    Requests and limits are summed across containers and multiplied by the
    replica count, so the resource carries its whole namespace footprint.
    A workload scaled to zero has no footprint and raises ``ValueError``;
    use ``is_scaled_to_zero`` to filter those out first.
    """
    kind = doc.get("kind")
    if kind not in config.WORKLOAD_KINDS:
        raise ValueError(f"unsupported workload kind {kind!r}")

    meta = doc.get("metadata") or {}
    annotations = meta.get("annotations") or {}
    pod_spec, labels, replicas = _pod_template(doc)
    if replicas < 1:
        raise ValueError(
            f"{kind.lower()}/{meta.get('name', 'unknown')} has {replicas} replicas; nothing to admit"
        )

    containers = [_container_resources(c) for c in pod_spec.get("containers") or []]
    inits = [_container_resources(c) for c in pod_spec.get("initContainers") or []]

    def column(rows: list[tuple], idx: int) -> list:
        return [row[idx] for row in rows]

    cpu_req = _effective(column(containers, 0), column(inits, 0))
    cpu_lim = _effective_limit(column(containers, 1), column(inits, 1))
    mem_req = _effective(column(containers, 2), column(inits, 2))
    mem_lim = _effective_limit(column(containers, 3), column(inits, 3))

    return Resource(
        namespace=meta.get("namespace") or config.DEFAULT_NAMESPACE,
        name=f"{kind.lower()}/{meta.get('name', 'unknown')}",
        labels={str(k): str(v) for k, v in labels.items()},
        cpu_request_millis=cpu_req * replicas,
        cpu_limit_millis=cpu_lim * replicas,
        mem_request_bytes=mem_req * replicas,
        mem_limit_bytes=mem_lim * replicas,
        pod_count=replicas,
        security_context=_security_context(pod_spec),
        pod_disruption_label=annotations.get(config.DISRUPTION_LABEL_ANNOTATION),
        affinity_requirements=_affinity(pod_spec),
    )


def to_resource(doc: dict[str, Any]) -> Resource:
    """Resource from either a Kubernetes manifest or a kubeadmit descriptor."""
    if not isinstance(doc, dict):
        raise ValueError(f"expected a mapping, got {type(doc).__name__}")
    if "apiVersion" in doc:
        return resource_from_manifest(doc)
    return Resource.model_validate(doc)


# ---------------------------------------------------------------------------
# Policy objects → rule descriptors
# ---------------------------------------------------------------------------

def _rule_header(doc: dict[str, Any], prefix: str, kind: str) -> dict[str, Any]:
    meta = doc.get("metadata") or {}
    ns = meta.get("namespace") or config.DEFAULT_NAMESPACE
    descriptor: dict[str, Any] = {
        "id": f"{prefix}/{ns}/{meta.get('name', 'unknown')}",
        "kind": kind,
        "namespaceSelector": ns,
    }
    priority = (meta.get("annotations") or {}).get(PRIORITY_ANNOTATION)
    if priority is not None:
        descriptor["priority"] = priority
    return descriptor


def _quota_descriptor(doc: dict[str, Any]) -> dict[str, Any]:
    descriptor = _rule_header(doc, "resourcequota", "Quota")
    hard = (doc.get("spec") or {}).get("hard") or {}
    cpu = hard.get("requests.cpu", hard.get("cpu"))
    mem = hard.get("requests.memory", hard.get("memory"))
    pods = hard.get("pods")
    try:
        if cpu is not None:
            descriptor["maxCpuMillis"] = parse_cpu_millis(cpu)
        if mem is not None:
            descriptor["maxMemBytes"] = parse_memory_bytes(mem)
        if pods is not None:
            descriptor["maxPods"] = int(pods)
    except ValueError as exc:
        raise InvalidRule([(descriptor["id"], str(exc))]) from None
    return descriptor


def _pdb_descriptor(doc: dict[str, Any]) -> dict[str, Any]:
    descriptor = _rule_header(doc, "poddisruptionbudget", "DisruptionBudget")
    spec = doc.get("spec") or {}
    match_labels = (spec.get("selector") or {}).get("matchLabels") or {}
    if not match_labels:
        raise InvalidRule([(descriptor["id"], "spec.selector.matchLabels is required")])

    annotations = (doc.get("metadata") or {}).get("annotations") or {}
    descriptor["labelSelector"] = {str(k): str(v) for k, v in match_labels.items()}
    descriptor["cohortLabel"] = annotations.get(config.DISRUPTION_LABEL_ANNOTATION) or sorted(match_labels)[0]

    min_available = spec.get("minAvailable")
    max_unavailable = spec.get("maxUnavailable")
    if isinstance(min_available, str):
        raise InvalidRule([(descriptor["id"], "percentage minAvailable is not supported")])
    if min_available is not None:
        descriptor["minAvailable"] = min_available
    if max_unavailable is not None:
        if not (isinstance(max_unavailable, str) and max_unavailable.endswith("%")):
            raise InvalidRule([(descriptor["id"], "maxUnavailable must be a percentage")])
        descriptor["maxUnavailablePercent"] = max_unavailable[:-1]
    return descriptor


def rules_from_manifest(doc: dict[str, Any]) -> list[dict[str, Any]]:
    """Rule descriptors for a ResourceQuota or PodDisruptionBudget object."""
    kind = doc.get("kind")
    if kind == "ResourceQuota":
        return [_quota_descriptor(doc)]
    if kind == "PodDisruptionBudget":
        return [_pdb_descriptor(doc)]
    name = (doc.get("metadata") or {}).get("name", "unknown")
    raise InvalidRule([(f"{kind}/{name}", f"unsupported policy object kind {kind!r}")])


def to_rule_descriptors(docs: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Flatten a mix of Kubernetes policy objects and kubeadmit descriptors."""
    descriptors: list[dict[str, Any]] = []
    for doc in docs:
        if isinstance(doc, dict) and "apiVersion" in doc:
            descriptors.extend(rules_from_manifest(doc))
        else:
            descriptors.append(doc)
    return descriptors


# ---------------------------------------------------------------------------
# Context documents
# ---------------------------------------------------------------------------

def context_from_documents(docs: Iterable[dict[str, Any]]) -> EvaluationContext:
    """Merge context documents into one ``EvaluationContext``.

    NetworkPolicy objects mark their namespace as covered; other mappings
    may carry ``cohorts`` and ``networkPolicyNamespaces`` directly.  A cohort
    listed more than once, in one document or across several, raises
    ``ValueError``.
    """
    cohorts: list[CohortStatus] = []
    covered: set[str] = set()
    for doc in docs:
        if not isinstance(doc, dict):
            raise ValueError(f"expected a mapping, got {type(doc).__name__}")
        if doc.get("kind") == "NetworkPolicy":
            covered.add((doc.get("metadata") or {}).get("namespace") or config.DEFAULT_NAMESPACE)
            continue
        partial = EvaluationContext.model_validate(doc)
        cohorts.extend(partial.cohorts)
        covered.update(partial.network_policy_namespaces)
    return EvaluationContext(cohorts=tuple(cohorts), network_policy_namespaces=frozenset(covered))
