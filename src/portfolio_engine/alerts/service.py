"""Owner-scoped management of alert rules over a record store."""

import logging
from collections.abc import Mapping
from typing import Any

from portfolio_engine.alerts.conditions import AlertKind, AlertRule
from portfolio_engine.alerts.engine import AlertEngine, validate
from portfolio_engine.core.errors import NotFoundError
from portfolio_engine.core.models import utcnow
from portfolio_engine.store.base import RecordStore

logger = logging.getLogger(__name__)


class AlertService:
    """
    Create, read, update, toggle and delete alert rules for their owner.

    A rule belonging to another owner is reported as not found.

    Parameters
    ----------
    store : RecordStore[AlertRule]
        Rule store keyed by rule id, owner key `owner_id`
    engine : AlertEngine | None
        Engine evaluating these rules; its triggered state for a rule is
        dropped whenever the rule is updated, toggled or deleted

    """

    def __init__(self, store: RecordStore[AlertRule], engine: AlertEngine | None = None) -> None:
        self.store = store
        self.engine = engine

    def create(self, owner_id: str, kind: AlertKind | str, name: str, conditions: Mapping[str, Any]) -> AlertRule:
        """
        Validate conditions and store a new active rule.

        Raises
        ------
        ValidationError
            If the kind or conditions are invalid

        """
        typed = validate(kind, conditions)
        rule = AlertRule(owner_id=owner_id, kind=AlertKind(kind), name=name, conditions=typed)
        self.store.upsert(rule)
        logger.info("Created %s alert %s for %s", rule.kind, rule.id, owner_id)
        return rule

    def get(self, owner_id: str, rule_id: str) -> AlertRule:
        rule = self.store.find_by_id(rule_id)
        if rule.owner_id != owner_id:
            msg = f"alert {rule_id} not found"
            raise NotFoundError(msg)
        return rule

    def list_rules(self, owner_id: str) -> list[AlertRule]:
        """Rules of an owner, newest first."""
        return sorted(self.store.find_by_owner(owner_id), key=lambda rule: rule.created_at, reverse=True)

    def active(self, owner_id: str) -> list[AlertRule]:
        return [rule for rule in self.list_rules(owner_id) if rule.active]

    def update(
        self,
        owner_id: str,
        rule_id: str,
        kind: AlertKind | str | None = None,
        name: str | None = None,
        conditions: Mapping[str, Any] | None = None,
    ) -> AlertRule:
        """
        Change a rule's kind, name or conditions.

        Changing the kind without new conditions re-validates the existing
        conditions against the new kind.

        Raises
        ------
        NotFoundError
            If the rule does not exist for this owner
        ValidationError
            If the resulting kind and conditions do not validate

        """
        rule = self.get(owner_id, rule_id)
        new_kind = AlertKind(kind) if kind else rule.kind
        changes: dict[str, Any] = {"updated_at": utcnow()}

        if conditions is not None:
            changes["conditions"] = validate(new_kind, conditions)
        elif new_kind != rule.kind:
            changes["conditions"] = validate(new_kind, rule.conditions.model_dump(exclude={"kind"}))
        if new_kind != rule.kind:
            changes["kind"] = new_kind
        if name:
            changes["name"] = name

        updated = rule.model_copy(update=changes)
        self.store.upsert(updated)
        self._reset(rule_id)
        return updated

    def toggle(self, owner_id: str, rule_id: str) -> AlertRule:
        """Flip a rule between active and inactive."""
        rule = self.get(owner_id, rule_id)
        updated = rule.model_copy(update={"active": not rule.active, "updated_at": utcnow()})
        self.store.upsert(updated)
        self._reset(rule_id)
        logger.info("Alert %s is now %s", rule_id, "active" if updated.active else "inactive")
        return updated

    def delete(self, owner_id: str, rule_id: str) -> None:
        self.get(owner_id, rule_id)
        self.store.delete(rule_id)
        self._reset(rule_id)
        logger.info("Deleted alert %s", rule_id)

    def _reset(self, rule_id: str) -> None:
        if self.engine is not None:
            self.engine.reset(rule_id)
