"""Mapping order reconciliation.

OneLogin evaluates enabled mappings by position (1..N) and keeps disabled
mappings unordered. There is no call that sets the whole state at once, so
convergence is done in steps:

1. read enabled mappings and check their positions are exactly 1..N
2. read disabled mappings
3. validate the desired state against the remote id set
4. disable mappings that should be disabled
5. enable mappings that should be enabled (position left null)
6. send the full enabled order in one sort call and verify the echo

Membership toggles run before the sort so an interrupted run leaves mappings
"not yet toggled" rather than a half-applied order. Every run re-reads OneLogin,
so a failed attempt is retried by simply invoking ``reconcile`` again.

Concurrent reconciliations against the same OneLogin instance are not
serialized here; two overlapping runs can race and the last sort call wins.
"""
from __future__ import annotations
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .client import OneLoginClient, PATH_MAPPINGS_SORT, RetryPolicy
from .exceptions import (
    DuplicateIdInDesiredStateError,
    InvariantViolationError,
    ReorderLengthMismatchError,
    ReorderOrderMismatchError,
    SetMismatchError,
    ToggleMismatchError,
    describe_position_violation,
)
from .mappings import MappingRule, MappingService

logger = logging.getLogger(__name__)

TOGGLE_RETRY_POLICY = RetryPolicy(
    retry_count=10,
    retriable_status_codes=frozenset({404, 429, 500, 502, 504}),
    backoff_base=1.0,
    backoff_exponent_base=1,
)


@dataclass
class DesiredOrderState:
    """Enabled ids in evaluation order plus the set of disabled ids."""
    enabled: List[int] = field(default_factory=list)
    disabled: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[int]]:
        return {"enabled": list(self.enabled), "disabled": list(self.disabled)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DesiredOrderState":
        return cls(
            enabled=[int(i) for i in data.get("enabled") or []],
            disabled=[int(i) for i in data.get("disabled") or []],
        )


@dataclass
class ObservedOrderState:
    enabled: List[int]
    disabled: List[int]
    warnings: List[str] = field(default_factory=list)


@dataclass
class ReconcilePlan:
    """Mutations required to move OneLogin to the desired state."""
    desired: DesiredOrderState
    current_enabled: List[MappingRule]
    current_disabled: List[MappingRule]
    to_disable: List[MappingRule]
    to_enable: List[MappingRule]

    @property
    def current_order(self) -> List[int]:
        return [m.id for m in self.current_enabled]

    @property
    def reorder_needed(self) -> bool:
        if self.to_disable or self.to_enable:
            return True
        return self.current_order != list(self.desired.enabled)

    @property
    def is_noop(self) -> bool:
        return not self.reorder_needed


@dataclass
class ReconcileResult:
    state: DesiredOrderState
    disabled: List[int] = field(default_factory=list)
    enabled: List[int] = field(default_factory=list)
    reordered: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.disabled or self.enabled or self.reordered)


def find_difference(a: Iterable[int], b: Iterable[int]) -> tuple[List[int], List[int]]:
    """Return (items of a missing from b, items of b missing from a), order preserved."""
    a_list, b_list = list(a), list(b)
    a_set, b_set = set(a_list), set(b_list)
    return [x for x in a_list if x not in b_set], [x for x in b_list if x not in a_set]


def check_positions(enabled: Sequence[MappingRule]) -> tuple[List[MappingRule], List[tuple[int, int, int]]]:
    """Sort enabled mappings by position and report rows that break 1..N.

    Raises:
        InvariantViolationError: If any enabled mapping has no position
    """
    null_positions = [m.id for m in enabled if m.position is None]
    if null_positions:
        raise InvariantViolationError(null_positions=null_positions)

    ordered = sorted(enabled, key=lambda m: m.position)
    out_of_position = [
        (m.id, m.position, expected)
        for expected, m in enumerate(ordered, start=1)
        if m.position != expected
    ]
    return ordered, out_of_position


def validate_desired_state(desired: DesiredOrderState, remote_ids: Iterable[int]) -> None:
    """Reject ambiguous or incomplete desired states.

    Raises:
        DuplicateIdInDesiredStateError: If an id is listed more than once
        SetMismatchError: If desired ids and remote ids differ
    """
    counts = Counter(list(desired.enabled) + list(desired.disabled))
    duplicates = [mapping_id for mapping_id, n in counts.items() if n > 1]
    if duplicates:
        raise DuplicateIdInDesiredStateError(duplicates)

    extra_in_desired, extra_in_remote = find_difference(counts.keys(), remote_ids)
    if extra_in_desired or extra_in_remote:
        raise SetMismatchError(extra_in_desired, extra_in_remote)


def _id_list(payload: List[Any]) -> List[int]:
    return [int(i) for i in payload]


class MappingOrderReconciler:
    """Converge OneLogin's mapping order to a declared state."""

    def __init__(
        self,
        client: OneLoginClient,
        toggle_retry: RetryPolicy = TOGGLE_RETRY_POLICY,
        state_store=None,
    ):
        """Initialize reconciler.

        Args:
            client: Authenticated OneLogin client
            toggle_retry: Retry policy for enable/disable updates
            state_store: Optional StateStore receiving the reconciled state
        """
        self.client = client
        self.mappings = MappingService(client)
        self.toggle_retry = toggle_retry
        self.state_store = state_store

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────
    def fetch_enabled(self, strict: bool = True) -> List[MappingRule]:
        """Return enabled mappings sorted by position.

        Args:
            strict: Raise on positions other than 1..N; when False the
                problem is logged as a warning and the sorted list returned

        Raises:
            InvariantViolationError: On null positions, or gaps/duplicates in strict mode
        """
        ordered, out_of_position = check_positions(self.mappings.list_enabled())
        if out_of_position:
            if strict:
                raise InvariantViolationError(out_of_position=out_of_position)
            logger.warning(describe_position_violation(out_of_position))
        return ordered

    def fetch_disabled(self) -> List[MappingRule]:
        return self.mappings.list_disabled()

    def observe(self) -> ObservedOrderState:
        """Read-only snapshot; position problems become warnings."""
        ordered, out_of_position = check_positions(self.mappings.list_enabled())
        warnings = [describe_position_violation(out_of_position)] if out_of_position else []
        for warning in warnings:
            logger.warning(warning)
        disabled = self.fetch_disabled()
        return ObservedOrderState(
            enabled=[m.id for m in ordered],
            disabled=[m.id for m in disabled],
            warnings=warnings,
        )

    def refresh(self, previous: DesiredOrderState) -> DesiredOrderState:
        """Rebuild the observed state from OneLogin.

        The enabled order comes from OneLogin; the disabled set must still match
        what was last recorded.

        Raises:
            SetMismatchError: If OneLogin's disabled set drifted from ``previous``
        """
        enabled = self.fetch_enabled(strict=False)
        disabled_ids = [m.id for m in self.fetch_disabled()]
        only_recorded, only_remote = find_difference(previous.disabled, disabled_ids)
        if only_recorded or only_remote:
            raise SetMismatchError(only_recorded, only_remote, context="recorded disabled")
        return DesiredOrderState(enabled=[m.id for m in enabled], disabled=list(previous.disabled))

    def plan(self, desired: DesiredOrderState) -> ReconcilePlan:
        """Compute the toggles needed without changing anything in OneLogin."""
        current_enabled = self.fetch_enabled(strict=True)
        current_disabled = self.fetch_disabled()

        remote_ids = [m.id for m in current_enabled] + [m.id for m in current_disabled]
        validate_desired_state(desired, remote_ids)

        enabled_in_plan = set(desired.enabled)
        disabled_in_plan = set(desired.disabled)
        return ReconcilePlan(
            desired=desired,
            current_enabled=current_enabled,
            current_disabled=current_disabled,
            to_disable=[m for m in current_enabled if m.id in disabled_in_plan],
            to_enable=[m for m in current_disabled if m.id in enabled_in_plan],
        )

    # ─────────────────────────────────────────────────────────────────────
    # Convergence
    # ─────────────────────────────────────────────────────────────────────
    def reconcile(self, desired: DesiredOrderState, cancel: Optional[threading.Event] = None) -> ReconcileResult:
        """Apply ``desired`` to OneLogin.

        Args:
            desired: Target enabled order and disabled set
            cancel: Event that aborts pending retry waits

        Returns:
            ReconcileResult with the new observed state and the ids touched

        Raises:
            MappingOrderError: Any invariant, validation or echo failure
            HTTPStatusError / RequestCancelledError: From the underlying calls
        """
        plan = self.plan(desired)
        result = ReconcileResult(state=DesiredOrderState(list(desired.enabled), list(desired.disabled)))

        for rule in plan.to_disable:
            self._toggle(rule, enabled=False, cancel=cancel)
            result.disabled.append(rule.id)

        for rule in plan.to_enable:
            self._toggle(rule, enabled=True, cancel=cancel)
            result.enabled.append(rule.id)

        if plan.reorder_needed:
            self._reorder(list(desired.enabled), cancel=cancel)
            result.reordered = True
        else:
            logger.info("[mapping-order] OneLogin already matches the desired order; nothing to do")

        if self.state_store is not None:
            self.state_store.save(result.state)
        return result

    def _toggle(self, rule: MappingRule, enabled: bool, cancel: Optional[threading.Event] = None) -> None:
        verb = "enable" if enabled else "disable"
        logger.info(f"[mapping-order] Requesting {verb} of mapping {rule.id} ('{rule.name}')")
        returned_id = self.mappings.set_enabled(rule, enabled, retry=self.toggle_retry, cancel=cancel)
        if returned_id != rule.id:
            raise ToggleMismatchError(rule.id, returned_id)

    def _reorder(self, enabled_ids: List[int], cancel: Optional[threading.Event] = None) -> List[int]:
        logger.info(f"[mapping-order] Sorting {len(enabled_ids)} enabled mappings")
        echoed = self.client.put(PATH_MAPPINGS_SORT, body=enabled_ids, response_model=_id_list, cancel=cancel)
        if len(echoed) != len(enabled_ids):
            raise ReorderLengthMismatchError(enabled_ids, echoed)
        for index, (expected, actual) in enumerate(zip(enabled_ids, echoed)):
            if expected != actual:
                raise ReorderOrderMismatchError(enabled_ids, echoed, index)
        return echoed
