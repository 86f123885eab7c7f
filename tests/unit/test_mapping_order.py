"""Unit tests for mapping order reconciliation against an in-memory OneLogin."""
import json
import threading

import pytest

from mapping_sync.core.onelogin import (
    DesiredOrderState,
    DuplicateIdInDesiredStateError,
    HTTPStatusError,
    InvariantViolationError,
    MappingOrderReconciler,
    ReorderLengthMismatchError,
    ReorderOrderMismatchError,
    RequestCancelledError,
    RetryPolicy,
    SetMismatchError,
    ToggleMismatchError,
)
from mapping_sync.core.onelogin.mapping_order import find_difference
from mapping_sync.core.state_store import StateStore

FAST_RETRY = RetryPolicy(retry_count=3, retriable_status_codes={404, 429, 500, 502, 504}, backoff_base=0.01)


@pytest.fixture()
def reconciler(onelogin_client, fake_onelogin):
    return MappingOrderReconciler(onelogin_client, toggle_retry=FAST_RETRY)


def _toggle_calls(fake):
    return [c for c in fake.mutating_calls if c["path"] != "/api/2/mappings/sort"]


def _seed_enabled(fake, *ids):
    for position, mapping_id in enumerate(ids, start=1):
        fake.add(mapping_id, enabled=True, position=position)


# ─────────────────────────────────────────────────────────────────────────────
# Convergence
# ─────────────────────────────────────────────────────────────────────────────
def test_reorder_only_when_membership_already_matches(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 3, 5, 8)
    fake_onelogin.add(1, enabled=False)

    result = reconciler.reconcile(DesiredOrderState(enabled=[5, 3, 8], disabled=[1]))

    assert _toggle_calls(fake_onelogin) == []
    sort_calls = fake_onelogin.calls_to("PUT", "/api/2/mappings/sort")
    assert [c["body"] for c in sort_calls] == [[5, 3, 8]]
    assert fake_onelogin.enabled_ids() == [5, 3, 8]
    assert result.reordered is True
    assert result.state.enabled == [5, 3, 8]


def test_disable_everything_then_empty_reorder(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 1, 2, 3)

    result = reconciler.reconcile(DesiredOrderState(enabled=[], disabled=[1, 2, 3]))

    toggles = _toggle_calls(fake_onelogin)
    assert [c["path"] for c in toggles] == ["/api/2/mappings/1", "/api/2/mappings/2", "/api/2/mappings/3"]
    assert all(c["body"]["enabled"] is False for c in toggles)
    assert [c["body"] for c in fake_onelogin.calls_to("PUT", "/api/2/mappings/sort")] == [[]]
    assert result.disabled == [1, 2, 3]
    assert fake_onelogin.enabled_ids() == []


def test_non_empty_echo_for_empty_reorder_is_length_mismatch(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 1, 2, 3)
    fake_onelogin.sort_echo_override = [1]

    with pytest.raises(ReorderLengthMismatchError) as excinfo:
        reconciler.reconcile(DesiredOrderState(enabled=[], disabled=[1, 2, 3]))

    assert excinfo.value.expected == []
    assert excinfo.value.actual == [1]


def test_position_gap_is_rejected_before_any_change(reconciler, fake_onelogin):
    fake_onelogin.add(1, enabled=True, position=1)
    fake_onelogin.add(2, enabled=True, position=2)
    fake_onelogin.add(3, enabled=True, position=4)

    with pytest.raises(InvariantViolationError) as excinfo:
        reconciler.reconcile(DesiredOrderState(enabled=[1, 2, 3], disabled=[]))

    assert excinfo.value.out_of_position == [(3, 4, 3)]
    assert str(excinfo.value).startswith("mapping positions are not linearly increasing starting at 1")
    assert fake_onelogin.mutating_calls == []


def test_duplicate_positions_are_rejected_before_any_change(reconciler, fake_onelogin):
    fake_onelogin.add(1, enabled=True, position=1)
    fake_onelogin.add(2, enabled=True, position=1)
    fake_onelogin.add(3, enabled=True, position=2)

    with pytest.raises(InvariantViolationError) as excinfo:
        reconciler.reconcile(DesiredOrderState(enabled=[1, 2, 3], disabled=[]))

    assert excinfo.value.out_of_position == [(2, 1, 2), (3, 2, 3)]
    assert fake_onelogin.mutating_calls == []


def test_null_position_on_enabled_mapping_is_fatal(reconciler, fake_onelogin):
    fake_onelogin.add(1, enabled=True, position=1)
    fake_onelogin.add(4, enabled=True, position=None)

    with pytest.raises(InvariantViolationError) as excinfo:
        reconciler.observe()

    assert excinfo.value.null_positions == [4]


def test_second_run_issues_no_mutating_calls(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 3, 5, 8)
    fake_onelogin.add(1, enabled=False)
    desired = DesiredOrderState(enabled=[5, 3, 8], disabled=[1])
    reconciler.reconcile(desired)
    fake_onelogin.calls.clear()

    result = reconciler.reconcile(desired)

    assert fake_onelogin.mutating_calls == []
    assert result.changed is False


def test_enable_and_disable_then_reorder(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 1, 2)
    fake_onelogin.add(7, enabled=False)
    desired = DesiredOrderState(enabled=[7, 2], disabled=[1])

    result = reconciler.reconcile(desired)

    toggles = _toggle_calls(fake_onelogin)
    assert [(c["path"], c["body"]["enabled"]) for c in toggles] == [
        ("/api/2/mappings/1", False),
        ("/api/2/mappings/7", True),
    ]
    assert all(c["body"]["position"] is None for c in toggles)
    assert result.disabled == [1]
    assert result.enabled == [7]
    assert fake_onelogin.enabled_ids() == desired.enabled
    assert fake_onelogin.disabled_ids() == sorted(desired.disabled)


# ─────────────────────────────────────────────────────────────────────────────
# Desired state validation
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "desired, duplicates",
    [
        (DesiredOrderState(enabled=[1, 1], disabled=[2]), [1]),
        (DesiredOrderState(enabled=[1], disabled=[2, 1]), [1]),
    ],
)
def test_duplicate_ids_are_rejected(reconciler, fake_onelogin, desired, duplicates):
    fake_onelogin.add(1, enabled=True, position=1)
    fake_onelogin.add(2, enabled=False)

    with pytest.raises(DuplicateIdInDesiredStateError) as excinfo:
        reconciler.reconcile(desired)

    assert excinfo.value.duplicate_ids == duplicates
    assert fake_onelogin.mutating_calls == []


def test_id_set_mismatch_is_rejected(reconciler, fake_onelogin):
    fake_onelogin.add(1, enabled=True, position=1)
    fake_onelogin.add(8, enabled=False)

    with pytest.raises(SetMismatchError) as excinfo:
        reconciler.reconcile(DesiredOrderState(enabled=[1, 99], disabled=[]))

    assert excinfo.value.extra_in_desired == [99]
    assert excinfo.value.extra_in_remote == [8]
    assert fake_onelogin.mutating_calls == []


def test_find_difference_preserves_order():
    assert find_difference([5, 3, 8], [8, 1]) == ([5, 3], [1])


# ─────────────────────────────────────────────────────────────────────────────
# Echo verification
# ─────────────────────────────────────────────────────────────────────────────
def test_toggle_echo_with_other_id_is_fatal(reconciler, fake_onelogin):
    fake_onelogin.add(1, enabled=False)
    fake_onelogin.toggle_echo_override[1] = 99

    with pytest.raises(ToggleMismatchError) as excinfo:
        reconciler.reconcile(DesiredOrderState(enabled=[1], disabled=[]))

    assert (excinfo.value.expected_id, excinfo.value.actual_id) == (1, 99)
    assert fake_onelogin.calls_to("PUT", "/api/2/mappings/sort") == []


def test_reorder_echo_in_other_order_is_fatal(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 3, 5, 8)
    fake_onelogin.sort_echo_override = [3, 5, 8]

    with pytest.raises(ReorderOrderMismatchError) as excinfo:
        reconciler.reconcile(DesiredOrderState(enabled=[5, 3, 8], disabled=[]))

    assert excinfo.value.index == 0


# ─────────────────────────────────────────────────────────────────────────────
# Retry and cancellation
# ─────────────────────────────────────────────────────────────────────────────
def test_transient_toggle_failures_are_retried(reconciler, fake_onelogin):
    fake_onelogin.add(1, enabled=True, position=1)
    fake_onelogin.add(2, enabled=False)
    fake_onelogin.fail_toggles = [500, 502]

    result = reconciler.reconcile(DesiredOrderState(enabled=[1, 2], disabled=[]))

    assert len(fake_onelogin.calls_to("PUT", "/api/2/mappings/2")) == 3
    assert result.enabled == [2]
    assert fake_onelogin.enabled_ids() == [1, 2]


def test_toggle_gives_up_after_retry_budget(onelogin_client, fake_onelogin):
    reconciler = MappingOrderReconciler(
        onelogin_client,
        toggle_retry=RetryPolicy(retry_count=1, retriable_status_codes={500}, backoff_base=0.01),
    )
    fake_onelogin.add(2, enabled=False)
    fake_onelogin.fail_toggles = [500, 500, 500]

    with pytest.raises(HTTPStatusError) as excinfo:
        reconciler.reconcile(DesiredOrderState(enabled=[2], disabled=[]))

    assert excinfo.value.status_code == 500
    assert len(fake_onelogin.calls_to("PUT", "/api/2/mappings/2")) == 2


def test_cancelled_reconcile_sends_no_toggle(reconciler, fake_onelogin):
    fake_onelogin.add(2, enabled=False)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RequestCancelledError):
        reconciler.reconcile(DesiredOrderState(enabled=[2], disabled=[]), cancel=cancel)

    assert fake_onelogin.mutating_calls == []


# ─────────────────────────────────────────────────────────────────────────────
# Read-only operations and persistence
# ─────────────────────────────────────────────────────────────────────────────
def test_plan_does_not_mutate(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 1, 2)
    fake_onelogin.add(3, enabled=False)

    plan = reconciler.plan(DesiredOrderState(enabled=[3, 2], disabled=[1]))

    assert [m.id for m in plan.to_disable] == [1]
    assert [m.id for m in plan.to_enable] == [3]
    assert plan.current_order == [1, 2]
    assert plan.reorder_needed is True
    assert fake_onelogin.mutating_calls == []


def test_plan_is_noop_when_state_matches(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 1, 2)

    plan = reconciler.plan(DesiredOrderState(enabled=[1, 2], disabled=[]))

    assert plan.is_noop is True


def test_observe_reports_position_gaps_as_warnings(reconciler, fake_onelogin):
    fake_onelogin.add(1, enabled=True, position=1)
    fake_onelogin.add(2, enabled=True, position=3)
    fake_onelogin.add(5, enabled=False)

    observed = reconciler.observe()

    assert observed.enabled == [1, 2]
    assert observed.disabled == [5]
    assert len(observed.warnings) == 1
    assert "2, 3, 2" in observed.warnings[0]


def test_refresh_takes_enabled_order_from_onelogin(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 4, 2)
    fake_onelogin.add(9, enabled=False)

    refreshed = reconciler.refresh(DesiredOrderState(enabled=[2, 4], disabled=[9]))

    assert refreshed.enabled == [4, 2]
    assert refreshed.disabled == [9]


def test_refresh_rejects_disabled_drift(reconciler, fake_onelogin):
    _seed_enabled(fake_onelogin, 1)
    fake_onelogin.add(2, enabled=False)
    fake_onelogin.add(3, enabled=False)

    with pytest.raises(SetMismatchError) as excinfo:
        reconciler.refresh(DesiredOrderState(enabled=[1], disabled=[2]))

    assert excinfo.value.extra_in_remote == [3]


def test_reconciled_state_is_persisted(onelogin_client, fake_onelogin, tmp_path):
    store = StateStore(tmp_path / "state" / "mapping-order.json")
    reconciler = MappingOrderReconciler(onelogin_client, toggle_retry=FAST_RETRY, state_store=store)
    _seed_enabled(fake_onelogin, 3, 5)
    fake_onelogin.add(1, enabled=False)

    reconciler.reconcile(DesiredOrderState(enabled=[5, 3], disabled=[1]))

    saved = json.loads(store.path.read_text())
    assert saved["enabled"] == [5, 3]
    assert saved["disabled"] == [1]
    assert store.load() == DesiredOrderState(enabled=[5, 3], disabled=[1])
