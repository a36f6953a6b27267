"""
Tests for ruleset.py - snapshots, ordering, loading and the policy store.
"""

import pytest

from kubeadmit.errors import DuplicateRuleId, InvalidRule, RuleNotFound
from kubeadmit.models import Rule, RuleKind
from kubeadmit.ruleset import PolicyStore, RuleSet, load_ruleset


def _quota(rule_id, priority=0, **ceilings):
    return Rule.from_descriptor({
        "id": rule_id, "kind": "Quota", "priority": priority, **(ceilings or {"maxPods": 10}),
    })


def test_add_returns_new_snapshot():
    """Test that adding leaves the original set untouched."""
    empty = RuleSet()
    one = empty.add(_quota("q1"))

    assert len(empty) == 0
    assert len(one) == 1
    assert "q1" in one
    assert one.get("q1").spec.max_pods == 10


def test_duplicate_id_is_rejected():
    """Test that ids are unique across all kinds."""
    ruleset = RuleSet([_quota("shared")])
    labels = Rule.from_descriptor({"id": "shared", "kind": "RequiredLabels", "requiredLabels": ["team"]})

    with pytest.raises(DuplicateRuleId) as exc:
        ruleset.add(labels)
    assert exc.value.rule_id == "shared"

    with pytest.raises(DuplicateRuleId):
        RuleSet([_quota("a"), _quota("a")])


def test_remove_and_get_unknown_id():
    """Test that unknown ids raise RuleNotFound."""
    ruleset = RuleSet([_quota("q1")])

    assert len(ruleset.remove("q1")) == 0
    with pytest.raises(RuleNotFound):
        ruleset.remove("missing")
    with pytest.raises(RuleNotFound):
        ruleset.get("missing")
    # RuleNotFound doubles as a LookupError for callers that expect one
    with pytest.raises(LookupError):
        ruleset.get("missing")


def test_rules_of_orders_by_priority_then_id():
    """Test that rules_of yields descending priority with id tie-break."""
    ruleset = RuleSet([
        _quota("b-low", priority=1),
        _quota("z-high", priority=10),
        _quota("a-high", priority=10),
        _quota("c-default"),
    ])

    ordered = [r.id for r in ruleset.rules_of(RuleKind.quota)]
    assert ordered == ["a-high", "z-high", "b-low", "c-default"]
    # Restartable: a second pass sees the same rules
    assert [r.id for r in ruleset.rules_of("Quota")] == ordered


def test_rules_of_kind_without_rules_is_empty():
    """Test that asking for an unused kind yields nothing."""
    ruleset = RuleSet([_quota("q1")])
    assert ruleset.rules_of(RuleKind.affinity_constraint) == ()


def test_load_ruleset_from_flat_descriptors():
    """Test that flat descriptors of several kinds load into one set."""
    ruleset = load_ruleset([
        {"id": "devteam1-quota", "kind": "Quota", "namespaceSelector": "DevTeam1",
         "maxCpuMillis": 20000, "maxMemBytes": 32 * 1024 ** 3, "maxPods": 20},
        {"id": "no-root", "kind": "SecurityConstraint", "forbidRunAsRoot": True},
        {"id": "web-pdb", "kind": "DisruptionBudget", "labelSelector": {"app": "web"},
         "cohortLabel": "app", "minAvailable": 3},
    ])

    assert ruleset.ids() == ["devteam1-quota", "no-root", "web-pdb"]
    assert ruleset.get("web-pdb").label_selector == {"app": "web"}


def test_load_ruleset_is_all_or_nothing():
    """Test that one malformed descriptor fails the whole load and names itself."""
    with pytest.raises(InvalidRule) as exc:
        load_ruleset([
            {"id": "good", "kind": "Quota", "maxPods": 5},
            {"id": "bad-pdb", "kind": "DisruptionBudget", "minAvailable": 2, "maxUnavailablePercent": 50},
            {"id": "bad-quota", "kind": "Quota"},
            "not a mapping",
        ])

    rule_ids = [rule_id for rule_id, _ in exc.value.problems]
    assert rule_ids == ["bad-pdb", "bad-quota", "#3"]
    assert isinstance(exc.value, ValueError)


def test_load_ruleset_reports_duplicates():
    """Test that duplicate ids in one load raise DuplicateRuleId."""
    with pytest.raises(DuplicateRuleId):
        load_ruleset([
            {"id": "q", "kind": "Quota", "maxPods": 1},
            {"id": "q", "kind": "Quota", "maxPods": 2},
        ])


def test_policy_store_publishes_new_snapshots():
    """Test that readers holding a snapshot are unaffected by later writes."""
    store = PolicyStore()
    before = store.snapshot()

    store.add(_quota("q1"))
    after = store.snapshot()

    assert len(before) == 0
    assert len(after) == 1
    store.remove("q1")
    assert len(store.snapshot()) == 0
    assert len(after) == 1


def test_policy_store_replace_keeps_previous_set_on_error():
    """Test that a failed replace leaves the active set in place."""
    store = PolicyStore(load_ruleset([{"id": "q1", "kind": "Quota", "maxPods": 3}]))

    with pytest.raises(InvalidRule):
        store.replace([{"id": "broken", "kind": "Quota"}])
    assert store.snapshot().ids() == ["q1"]

    store.replace([{"id": "q2", "kind": "Quota", "maxPods": 4}])
    assert store.snapshot().ids() == ["q2"]
