"""Shared Pydantic models for kubeadmit.

Every module imports from here to keep Resource, Rule, Violation and
Verdict definitions in one place.  All models are frozen: a resource or
rule never changes once it has been handed to the evaluator.

Descriptors use the camelCase keys of Kubernetes manifests
(``cpuRequestMillis``, ``namespaceSelector``); snake_case is accepted too.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Literal, Mapping, NamedTuple, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from kubeadmit import config


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )


# Stored as a read-only view; item assignment raises TypeError.
LabelMap = Annotated[
    Mapping[str, str],
    AfterValidator(lambda value: MappingProxyType(dict(value))),
    PlainSerializer(lambda value: dict(value)),
]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    """Violation severity levels (descending priority)."""
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class RuleKind(str, Enum):
    """Policy kinds, in the order the evaluator walks them."""
    quota = "Quota"
    disruption_budget = "DisruptionBudget"
    security_constraint = "SecurityConstraint"
    affinity_constraint = "AffinityConstraint"
    network_constraint = "NetworkConstraint"
    required_labels = "RequiredLabels"


class Operator(str, Enum):
    """Match-expression operators (node-affinity subset)."""
    in_ = "In"
    not_in = "NotIn"
    exists = "Exists"


# ---------------------------------------------------------------------------
# Selector predicate
# ---------------------------------------------------------------------------

def matches_selector(labels: Mapping[str, str], selector: Mapping[str, str]) -> bool:
    """True iff every selector key is present in *labels* with an equal value.

    An empty selector matches everything.
    """
    return all(key in labels and labels[key] == value for key, value in selector.items())


# ---------------------------------------------------------------------------
# Resource model
# ---------------------------------------------------------------------------

class MatchExpression(_Frozen):
    """One ``(key, operator, values)`` affinity term.

    Values form a set; they are deduplicated and sorted on construction so
    two expressions compare equal regardless of value order.  A plain
    ``[key, operator, values]`` triple is accepted as input.
    """
    key: str = Field(..., min_length=1)
    operator: Operator
    values: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _from_triple(cls, data: Any) -> Any:
        if isinstance(data, (list, tuple)) and 2 <= len(data) <= 3:
            key, operator, *rest = data
            return {"key": key, "operator": operator, "values": rest[0] if rest else ()}
        return data

    @field_validator("values", mode="before")
    @classmethod
    def _normalise_values(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(sorted({str(v) for v in value}))

    @model_validator(mode="after")
    def _check_arity(self) -> "MatchExpression":
        if self.operator is Operator.exists and self.values:
            raise ValueError(f"'{self.key} Exists' must not carry values")
        if self.operator is not Operator.exists and not self.values:
            raise ValueError(f"'{self.key} {self.operator.value}' needs at least one value")
        return self

    def __str__(self) -> str:
        if self.operator is Operator.exists:
            return f"{self.key} Exists"
        return f"{self.key} {self.operator.value} ({', '.join(self.values)})"


class SecurityContext(_Frozen):
    """Policy-relevant slice of a pod/container security context."""
    run_as_root: bool = False
    allow_privilege_escalation: bool = False
    added_capabilities: frozenset[str] = frozenset()


class Resource(_Frozen):
    """One workload unit under evaluation."""
    namespace: str = Field(..., min_length=1)
    name: str = ""
    labels: LabelMap = Field(default_factory=dict, validate_default=True)
    cpu_request_millis: int = Field(default=0, ge=0)
    cpu_limit_millis: int = Field(default=0, ge=0, description="0 = unbounded")
    mem_request_bytes: int = Field(default=0, ge=0)
    mem_limit_bytes: int = Field(default=0, ge=0, description="0 = unbounded")
    pod_count: int = Field(default=1, ge=1)
    security_context: SecurityContext = Field(default_factory=SecurityContext)
    pod_disruption_label: Optional[str] = None
    affinity_requirements: tuple[MatchExpression, ...] = ()

    @model_validator(mode="after")
    def _requests_within_limits(self) -> "Resource":
        if self.cpu_limit_millis and self.cpu_request_millis > self.cpu_limit_millis:
            raise ValueError(
                f"cpu request {self.cpu_request_millis}m exceeds limit {self.cpu_limit_millis}m"
            )
        if self.mem_limit_bytes and self.mem_request_bytes > self.mem_limit_bytes:
            raise ValueError(
                f"memory request {self.mem_request_bytes} exceeds limit {self.mem_limit_bytes}"
            )
        return self

    @property
    def display_name(self) -> str:
        return f"{self.namespace}/{self.name}" if self.name else self.namespace


# ---------------------------------------------------------------------------
# Rule payloads (one per kind)
# ---------------------------------------------------------------------------

class QuotaSpec(_Frozen):
    """Per-namespace ceilings.  ``None`` = no limit; ``0`` = no capacity."""
    kind: Literal["Quota"] = "Quota"
    max_cpu_millis: Optional[int] = Field(default=None, ge=0)
    max_mem_bytes: Optional[int] = Field(default=None, ge=0)
    max_pods: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _at_least_one_ceiling(self) -> "QuotaSpec":
        if self.max_cpu_millis is None and self.max_mem_bytes is None and self.max_pods is None:
            raise ValueError("quota sets no ceiling (maxCpuMillis, maxMemBytes or maxPods)")
        return self


class DisruptionBudgetSpec(_Frozen):
    kind: Literal["DisruptionBudget"] = "DisruptionBudget"
    cohort_label: Optional[str] = None
    min_available: Optional[int] = Field(default=None, ge=0)
    max_unavailable_percent: Optional[float] = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def _exactly_one_budget(self) -> "DisruptionBudgetSpec":
        has_min = self.min_available is not None
        has_max = self.max_unavailable_percent is not None
        if has_min and has_max:
            raise ValueError("set either minAvailable or maxUnavailablePercent, not both")
        if not has_min and not has_max:
            raise ValueError("one of minAvailable or maxUnavailablePercent is required")
        return self


class SecurityConstraintSpec(_Frozen):
    """``allowed_capabilities=None`` leaves capabilities unconstrained;
    an empty set forbids every added capability."""
    kind: Literal["SecurityConstraint"] = "SecurityConstraint"
    forbid_run_as_root: bool = False
    forbid_privilege_escalation: bool = False
    allowed_capabilities: Optional[frozenset[str]] = None


class AffinityConstraintSpec(_Frozen):
    kind: Literal["AffinityConstraint"] = "AffinityConstraint"
    required_match_expressions: tuple[MatchExpression, ...] = Field(..., min_length=1)


class NetworkConstraintSpec(_Frozen):
    kind: Literal["NetworkConstraint"] = "NetworkConstraint"
    require_network_policy: bool = True


class RequiredLabelsSpec(_Frozen):
    kind: Literal["RequiredLabels"] = "RequiredLabels"
    required_labels: frozenset[str] = Field(..., min_length=1)


RuleSpec = Annotated[
    Union[
        QuotaSpec,
        DisruptionBudgetSpec,
        SecurityConstraintSpec,
        AffinityConstraintSpec,
        NetworkConstraintSpec,
        RequiredLabelsSpec,
    ],
    Field(discriminator="kind"),
]

_COMMON_RULE_KEYS = {
    "id",
    "namespaceSelector", "namespace_selector",
    "labelSelector", "label_selector",
    "priority",
    "severity",
}


class Rule(_Frozen):
    """A policy rule: common scoping fields plus a kind-specific payload."""
    id: str = Field(..., min_length=1)
    namespace_selector: str = Field(default=config.WILDCARD, min_length=1)
    label_selector: LabelMap = Field(default_factory=dict, validate_default=True)
    priority: int = 0
    severity: Optional[Severity] = None
    spec: RuleSpec

    @property
    def kind(self) -> RuleKind:
        return RuleKind(self.spec.kind)

    @property
    def effective_severity(self) -> Severity:
        if self.severity is not None:
            return self.severity
        return Severity(config.DEFAULT_SEVERITY.get(self.spec.kind, Severity.medium.value))

    @classmethod
    def from_descriptor(cls, descriptor: Mapping[str, Any]) -> "Rule":
        """Build a rule from a flat descriptor.

        ``{"id": "q1", "kind": "Quota", "maxPods": 20}``: every key that is
        not a common field goes into the payload.  A descriptor that already
        nests its payload under ``spec`` is passed through unchanged.
        """
        if "spec" in descriptor:
            return cls.model_validate(dict(descriptor))
        common = {k: v for k, v in descriptor.items() if k in _COMMON_RULE_KEYS}
        payload = {k: v for k, v in descriptor.items() if k not in _COMMON_RULE_KEYS}
        return cls.model_validate({**common, "spec": payload})


# ---------------------------------------------------------------------------
# Evaluation context (caller-supplied live state)
# ---------------------------------------------------------------------------

class CohortKey(NamedTuple):
    """Identity of a disruption cohort: pods sharing ``label=value``."""
    namespace: str
    label: str
    value: str


class CohortStatus(_Frozen):
    """Live membership of one cohort, as observed by the caller."""
    namespace: str
    label: str
    value: str
    size: int = Field(..., ge=0)
    unavailable: int = Field(default=0, ge=0)

    @property
    def key(self) -> CohortKey:
        return CohortKey(self.namespace, self.label, self.value)


class EvaluationContext(_Frozen):
    cohorts: tuple[CohortStatus, ...] = ()
    network_policy_namespaces: frozenset[str] = frozenset()

    @model_validator(mode="after")
    def _unique_cohorts(self) -> "EvaluationContext":
        seen: set[CohortKey] = set()
        for status in self.cohorts:
            if status.key in seen:
                raise ValueError(
                    f"cohort {status.label}={status.value} in '{status.namespace}' is listed twice"
                )
            seen.add(status.key)
        return self

    def cohort(self, key: CohortKey) -> Optional[CohortStatus]:
        for status in self.cohorts:
            if status.key == key:
                return status
        return None


# ---------------------------------------------------------------------------
# Verdict: the output of every admission
# ---------------------------------------------------------------------------

class Violation(_Frozen):
    """One rule that the resource does not satisfy."""
    rule_id: str
    kind: RuleKind
    message: str
    severity: Severity
    code: str = Field(default="", description="Machine-readable reason, e.g. QuotaExceeded")


class Verdict(_Frozen):
    """Accept/reject outcome plus ordered violations for one resource."""
    accepted: bool
    violations: tuple[Violation, ...] = ()
    namespace: str = ""
    resource_name: str = ""
    committed: bool = False

    @model_validator(mode="after")
    def _accepted_iff_clean(self) -> "Verdict":
        if self.accepted == bool(self.violations):
            raise ValueError("a verdict is accepted exactly when it has no violations")
        return self
