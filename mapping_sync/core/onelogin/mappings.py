"""OneLogin user mapping model and per-rule operations."""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .client import OneLoginClient, PATH_MAPPINGS, RetryPolicy, NO_RETRY
from .exceptions import NotFoundError, OneLoginError

logger = logging.getLogger(__name__)


@dataclass
class MappingCondition:
    source: str
    operator: str
    value: str

    def to_payload(self) -> Dict[str, Any]:
        return {"source": self.source, "operator": self.operator, "value": self.value}


@dataclass
class MappingAction:
    action: str
    value: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {"action": self.action, "value": list(self.value)}


@dataclass
class MappingRule:
    """A OneLogin user mapping.

    ``position`` is only set while the mapping is enabled; disabled mappings
    carry ``None``. ``id`` is None until OneLogin assigns one.

    Condition sources/operators and action values can be discovered with:
    https://developers.onelogin.com/api-docs/2/user-mappings/list-conditions
    https://developers.onelogin.com/api-docs/2/user-mappings/list-actions
    """
    name: str
    match: str
    enabled: bool = False
    position: Optional[int] = None
    conditions: List[MappingCondition] = field(default_factory=list)
    actions: List[MappingAction] = field(default_factory=list)
    id: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MappingRule":
        position = payload.get("position")
        mapping_id = payload.get("id")
        return cls(
            id=int(mapping_id) if mapping_id else None,
            name=payload.get("name", ""),
            match=payload.get("match", ""),
            enabled=bool(payload.get("enabled", False)),
            position=int(position) if position is not None else None,
            conditions=[
                MappingCondition(c.get("source", ""), c.get("operator", ""), str(c.get("value", "")))
                for c in payload.get("conditions") or []
            ],
            actions=[
                MappingAction(a.get("action", ""), [str(v) for v in a.get("value") or []])
                for a in payload.get("actions") or []
            ],
        )

    @classmethod
    def from_list(cls, payload: List[Dict[str, Any]]) -> List["MappingRule"]:
        return [cls.from_payload(item) for item in payload or []]

    def to_payload(self) -> Dict[str, Any]:
        """Wire representation; ``id`` is omitted when unset, ``position`` is always sent."""
        payload: Dict[str, Any] = {}
        if self.id:
            payload["id"] = self.id
        payload.update({
            "name": self.name,
            "match": self.match,
            "enabled": self.enabled,
            "position": self.position,
            "conditions": [c.to_payload() for c in self.conditions],
            "actions": [a.to_payload() for a in self.actions],
        })
        return payload

    def as_toggled(self, enabled: bool) -> "MappingRule":
        """Copy suitable as an update body that flips membership.

        The id is cleared (it travels in the URL) and the position is nulled;
        enabled mappings receive their position from the sort call.
        """
        return replace(self, id=None, position=None, enabled=enabled)


def echoed_id(payload: Dict[str, Any]) -> Optional[int]:
    """Extract the ``id`` OneLogin echoes back from a create/update call."""
    value = payload.get("id")
    return int(value) if value else None


class MappingService:
    """Service for managing individual OneLogin mappings."""

    def __init__(self, client: OneLoginClient):
        """Initialize mapping service.

        Args:
            client: Authenticated OneLogin client
        """
        self.client = client

    def list_enabled(self) -> List[MappingRule]:
        """Return enabled mappings in the order OneLogin lists them."""
        return self.client.get(PATH_MAPPINGS, response_model=MappingRule.from_list)

    def list_disabled(self) -> List[MappingRule]:
        return self.client.get(PATH_MAPPINGS, params={"enabled": "false"}, response_model=MappingRule.from_list)

    def get(self, mapping_id: int) -> MappingRule:
        """Fetch one mapping.

        Raises:
            NotFoundError: If the mapping does not exist
        """
        return self.client.get(f"{PATH_MAPPINGS}/{mapping_id}", response_model=MappingRule.from_payload)

    def create(self, rule: MappingRule) -> int:
        """Create a mapping and return its id.

        Mappings are always created disabled without a position; enabling and
        ordering happen through the mapping order reconciler.
        """
        body = rule.as_toggled(enabled=False)
        new_id = self.client.post(PATH_MAPPINGS, body=body.to_payload(), response_model=echoed_id)
        if not new_id:
            raise OneLoginError(f"OneLogin did not return an id for new mapping '{rule.name}'")
        logger.info(f"[mapping] Created mapping '{rule.name}' (id={new_id}, disabled)")
        return new_id

    def update(self, rule: MappingRule) -> MappingRule:
        """Update a mapping's definition without touching its membership.

        The current enabled flag is read from OneLogin and kept; the position is
        never sent so the mapping order stays owned by the reconciler.
        """
        if not rule.id:
            raise ValueError("cannot update a mapping without an id")
        current = self.get(rule.id)
        body = rule.as_toggled(enabled=current.enabled)
        returned_id = self.client.put(
            f"{PATH_MAPPINGS}/{rule.id}",
            body=body.to_payload(),
            response_model=echoed_id,
        )
        if returned_id != rule.id:
            raise OneLoginError(f"update of mapping {rule.id} echoed id {returned_id}")
        return self.get(rule.id)

    def set_enabled(
        self,
        rule: MappingRule,
        enabled: bool,
        retry: RetryPolicy = NO_RETRY,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[int]:
        """Flip a mapping's membership; returns the id echoed by OneLogin."""
        if not rule.id:
            raise ValueError("cannot toggle a mapping without an id")
        return self.client.put(
            f"{PATH_MAPPINGS}/{rule.id}",
            body=rule.as_toggled(enabled).to_payload(),
            response_model=echoed_id,
            retry=retry,
            cancel=cancel,
        )

    def delete(self, mapping_id: int) -> bool:
        """Delete a mapping.

        Returns:
            True if deleted, False if it was already gone (404)
        """
        try:
            self.client.delete(f"{PATH_MAPPINGS}/{mapping_id}")
        except NotFoundError:
            logger.info(f"[mapping] Mapping {mapping_id} already absent")
            return False
        logger.info(f"[mapping] Deleted mapping {mapping_id}")
        return True
