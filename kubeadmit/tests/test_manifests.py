"""
Tests for tools/manifests.py - quantity parsing and manifest conversion.
"""

import pytest

from kubeadmit.errors import InvalidRule
from kubeadmit.models import Operator
from kubeadmit.ruleset import load_ruleset
from kubeadmit.tools.manifests import (
    context_from_documents,
    is_scaled_to_zero,
    parse_cpu_millis,
    parse_memory_bytes,
    resource_from_manifest,
    rules_from_manifest,
    to_resource,
    to_rule_descriptors,
)


def _deployment(**overrides):
    doc = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "shop"},
        "spec": {
            "replicas": 3,
            "template": {
                "metadata": {"labels": {"app": "web"}},
                "spec": {
                    "securityContext": {"runAsNonRoot": True},
                    "containers": [
                        {
                            "name": "app",
                            "securityContext": {"allowPrivilegeEscalation": False},
                            "resources": {
                                "requests": {"cpu": "250m", "memory": "256Mi"},
                                "limits": {"cpu": "500m", "memory": "512Mi"},
                            },
                        },
                        {
                            "name": "sidecar",
                            "securityContext": {"allowPrivilegeEscalation": False},
                            "resources": {"limits": {"cpu": "100m", "memory": "64Mi"}},
                        },
                    ],
                },
            },
        },
    }
    doc["spec"].update(overrides)
    return doc


@pytest.mark.parametrize("value,expected", [
    ("500m", 500),
    ("2", 2000),
    ("0.1", 100),
    (1, 1000),
    ("0.0005", 1),
    (None, 0),
])
def test_parse_cpu_millis(value, expected):
    """Test CPU quantity conversion, rounding fractions of a millicore up."""
    assert parse_cpu_millis(value) == expected


@pytest.mark.parametrize("value,expected", [
    ("512Mi", 512 * 1024 ** 2),
    ("1Gi", 1024 ** 3),
    ("1G", 10 ** 9),
    ("128974848", 128974848),
    ("1e3", 1000),
    ("1500m", 2),
])
def test_parse_memory_bytes(value, expected):
    """Test memory quantity conversion across binary and decimal suffixes."""
    assert parse_memory_bytes(value) == expected


@pytest.mark.parametrize("value", ["lots", "-1", "1Zi"])
def test_bad_quantities_raise(value):
    """Test that unparseable or negative quantities raise ValueError."""
    with pytest.raises(ValueError):
        parse_memory_bytes(value)


def test_deployment_becomes_resource():
    """Test that requests are summed per pod and multiplied by replicas."""
    resource = resource_from_manifest(_deployment())

    assert resource.namespace == "shop"
    assert resource.name == "deployment/web"
    assert resource.labels == {"app": "web"}
    assert resource.pod_count == 3
    # sidecar request defaults to its limit
    assert resource.cpu_request_millis == (250 + 100) * 3
    assert resource.cpu_limit_millis == (500 + 100) * 3
    assert resource.mem_request_bytes == (256 + 64) * 1024 ** 2 * 3
    assert not resource.security_context.run_as_root
    assert not resource.security_context.allow_privilege_escalation


def test_unbounded_container_makes_limit_unbounded():
    """Test that one container without a limit leaves the pod unbounded."""
    doc = _deployment()
    del doc["spec"]["template"]["spec"]["containers"][0]["resources"]["limits"]

    resource = resource_from_manifest(doc)

    assert resource.cpu_limit_millis == 0
    assert resource.cpu_request_millis == 350 * 3


def test_pod_defaults_to_root_and_escalation():
    """Test Kubernetes security defaults for a bare pod."""
    pod = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "debug", "labels": {"app": "debug"}},
        "spec": {
            "containers": [{
                "name": "shell",
                "securityContext": {"capabilities": {"add": ["NET_ADMIN"]}},
            }],
            "nodeSelector": {"zone": "eu-1"},
            "affinity": {"nodeAffinity": {"requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [{"matchExpressions": [
                    {"key": "gpu", "operator": "Exists"},
                    {"key": "arch", "operator": "Gt", "values": ["1"]},
                ]}],
            }}},
        },
    }

    resource = resource_from_manifest(pod)

    assert resource.namespace == "default"
    assert resource.pod_count == 1
    assert resource.security_context.run_as_root
    assert resource.security_context.allow_privilege_escalation
    assert resource.security_context.added_capabilities == frozenset({"NET_ADMIN"})
    assert [(e.key, e.operator) for e in resource.affinity_requirements] == [
        ("zone", Operator.in_), ("gpu", Operator.exists),
    ]


def test_unsupported_workload_kind():
    """Test that non-workload kinds are refused."""
    with pytest.raises(ValueError):
        resource_from_manifest({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "x"}})


def test_plain_descriptor_passes_through():
    """Test that documents without apiVersion are read as resource descriptors."""
    resource = to_resource({"namespace": "DevTeam1", "cpuRequestMillis": 1000, "podCount": 2})
    assert resource.cpu_request_millis == 1000
    assert resource.pod_count == 2


def test_resource_quota_becomes_quota_rule():
    """Test ResourceQuota hard limits mapped onto quota ceilings."""
    [descriptor] = rules_from_manifest({
        "apiVersion": "v1",
        "kind": "ResourceQuota",
        "metadata": {"name": "compute", "namespace": "DevTeam1"},
        "spec": {"hard": {"requests.cpu": "20", "requests.memory": "32Gi", "pods": "20"}},
    })

    assert descriptor == {
        "id": "resourcequota/DevTeam1/compute",
        "kind": "Quota",
        "namespaceSelector": "DevTeam1",
        "maxCpuMillis": 20000,
        "maxMemBytes": 32 * 1024 ** 3,
        "maxPods": 20,
    }


def test_pod_disruption_budget_becomes_rule():
    """Test that a PDB keys its cohort on the first selector label by default."""
    [descriptor] = rules_from_manifest({
        "apiVersion": "policy/v1",
        "kind": "PodDisruptionBudget",
        "metadata": {"name": "web", "namespace": "shop", "annotations": {"kubeadmit.io/priority": "5"}},
        "spec": {"minAvailable": 3, "selector": {"matchLabels": {"tier": "fe", "app": "web"}}},
    })

    rule = load_ruleset([descriptor]).get("poddisruptionbudget/shop/web")
    assert rule.priority == 5
    assert rule.label_selector == {"tier": "fe", "app": "web"}
    assert rule.spec.cohort_label == "app"
    assert rule.spec.min_available == 3


@pytest.mark.parametrize("spec", [
    {"minAvailable": "50%", "selector": {"matchLabels": {"app": "web"}}},
    {"maxUnavailable": 1, "selector": {"matchLabels": {"app": "web"}}},
    {"minAvailable": 1},
])
def test_unsupported_pdb_shapes(spec):
    """Test that PDB forms outside the supported subset raise InvalidRule."""
    with pytest.raises(InvalidRule):
        rules_from_manifest({
            "apiVersion": "policy/v1",
            "kind": "PodDisruptionBudget",
            "metadata": {"name": "web", "namespace": "shop"},
            "spec": spec,
        })


def test_mixed_rule_documents():
    """Test that manifests and native descriptors can share one rule file."""
    descriptors = to_rule_descriptors([
        {"apiVersion": "v1", "kind": "ResourceQuota",
         "metadata": {"name": "pods", "namespace": "a"}, "spec": {"hard": {"pods": 2}}},
        {"id": "no-root", "kind": "SecurityConstraint", "forbidRunAsRoot": True},
    ])

    assert load_ruleset(descriptors).ids() == ["no-root", "resourcequota/a/pods"]


def test_context_from_network_policies_and_cohorts():
    """Test that NetworkPolicy objects and cohort documents merge into one context."""
    ctx = context_from_documents([
        {"apiVersion": "networking.k8s.io/v1", "kind": "NetworkPolicy",
         "metadata": {"name": "deny-all", "namespace": "shop"}},
        {"cohorts": [{"namespace": "shop", "label": "app", "value": "web", "size": 5}]},
        {"networkPolicyNamespaces": ["payments"]},
    ])

    assert ctx.network_policy_namespaces == frozenset({"shop", "payments"})
    assert ctx.cohort(("shop", "app", "web")).size == 5


def test_scaled_to_zero_workload_has_nothing_to_admit():
    """Test that replicas: 0 is detected and refused as a resource."""
    idle = _deployment(replicas=0)
    idle_job = {
        "apiVersion": "batch/v1", "kind": "Job", "metadata": {"name": "batch"},
        "spec": {"parallelism": 0, "template": {"spec": {"containers": [{"name": "run"}]}}},
    }

    assert is_scaled_to_zero(idle)
    assert is_scaled_to_zero(idle_job)
    assert not is_scaled_to_zero(_deployment())
    assert not is_scaled_to_zero({"apiVersion": "v1", "kind": "ConfigMap"})
    with pytest.raises(ValueError):
        resource_from_manifest(idle)


def test_duplicate_cohorts_are_rejected():
    """Test that the same cohort listed twice across context documents is an error."""
    cohort = {"namespace": "shop", "label": "app", "value": "web", "size": 5}

    with pytest.raises(ValueError):
        context_from_documents([{"cohorts": [cohort]}, {"cohorts": [dict(cohort, size=3)]}])
    with pytest.raises(ValueError):
        context_from_documents([{"cohorts": [cohort, cohort]}])
