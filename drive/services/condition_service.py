"""Condition-gated automation rules: evaluate, decide, dispatch."""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from common.constants import CONDITION_KINDS, RULE_KINDS
from common.logging_config import get_logger
from common.protocol import RULE_PROTOCOL, metadata_record
from drive.domain import AutomationRule, Condition, SweepResult
from drive.exceptions import CollaboratorError, DriveError, NotFoundError, ValidationError
from drive.utils import generate_uuid, parse_timestamp, utcnow

logger = get_logger(__name__)

ActionHandler = Callable[[AutomationRule], Awaitable[None]]
ConditionSpec = Union[Condition, Dict[str, Any]]


def _noop() -> None:
    return None


class ConditionEngine:
    """
    Holds automation rules and decides when they fire.

    A rule fires only when every one of its conditions is met in the same
    evaluation pass. Time-based conditions are checked locally; the other
    kinds are delegated to the verifier registered for that kind. A kind
    without a verifier is never met. Firing dispatches to the action
    handler registered for the rule's kind; rules stay active after firing.
    """

    def __init__(
        self,
        verifiers: Optional[Dict[str, Any]] = None,
        ledger=None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.verifiers: Dict[str, Any] = dict(verifiers or {})
        self.ledger = ledger
        self._on_change = on_change or _noop
        self._rules: Dict[str, AutomationRule] = {}
        self._actions: Dict[str, ActionHandler] = {}

    def register_action(self, kind: str, handler: ActionHandler) -> None:
        """
        Register the coroutine that performs a rule kind's action.

        Args:
            kind: Rule kind
            handler: ``async handler(rule)``
        """
        if kind not in RULE_KINDS:
            raise ValidationError(f"Unknown rule kind: {kind}")
        self._actions[kind] = handler

    def register_verifier(self, kind: str, verifier: Any) -> None:
        if kind not in CONDITION_KINDS or kind == "time-based":
            raise ValidationError(f"Cannot register a verifier for condition kind: {kind}")
        self.verifiers[kind] = verifier

    async def create_rule(
        self,
        file_id: str,
        kind: str,
        conditions: Iterable[ConditionSpec],
        parameters: Optional[Dict[str, Any]] = None,
    ) -> AutomationRule:
        """
        Create an active rule and record it on the ledger.

        Args:
            file_id: File the rule is attached to
            kind: One of the rule kinds
            conditions: Condition objects or ``{"kind": ..., "parameters": ...}`` dicts
            parameters: Action parameters (e.g. ``renewalDays`` for auto-renewal)

        Returns:
            The new rule

        Raises:
            ValidationError: Unknown kind, malformed condition or parameters
            CollaboratorError: If the ledger rejects the rule record
        """
        if kind not in RULE_KINDS:
            raise ValidationError(f"Unknown rule kind: {kind}")

        normalized = [self._normalize_condition(spec) for spec in conditions]
        parameters = dict(parameters or {})

        try:
            record = metadata_record(RULE_PROTOCOL, file_id, {
                'kind': kind,
                'conditions': [{'kind': c.kind, 'parameters': c.parameters} for c in normalized],
                'parameters': parameters,
            })
        except TypeError as e:
            raise ValidationError(f"Rule parameters must be JSON-serializable: {e}") from e

        ledger_ref = None
        if self.ledger is not None:
            try:
                ledger_ref = await self.ledger.commit_record(record)
            except Exception as e:
                logger.error(f"Failed to record {kind} rule for file {file_id}: {e}", exc_info=True)
                raise CollaboratorError("ledger.commit_record", e) from e

        now = utcnow()
        rule = AutomationRule(
            id=generate_uuid(),
            file_id=file_id,
            kind=kind,
            conditions=normalized,
            created_at=now,
            updated_at=now,
            parameters=parameters,
            ledger_ref=ledger_ref,
        )
        self._rules[rule.id] = rule
        self._persist(lambda: self._rules.pop(rule.id, None))
        logger.info(f"Created {kind} rule {rule.id} for file {file_id} with {len(normalized)} conditions")
        return rule

    def _persist(self, undo: Callable[[], None]) -> None:
        """Save, reverting the in-memory change if the save fails."""
        try:
            self._on_change()
        except Exception:
            undo()
            raise

    @staticmethod
    def _normalize_condition(spec: ConditionSpec) -> Condition:
        if isinstance(spec, Condition):
            kind, parameters = spec.kind, dict(spec.parameters)
        elif isinstance(spec, dict):
            kind, parameters = spec.get('kind'), dict(spec.get('parameters') or {})
        else:
            raise ValidationError(f"Unsupported condition: {spec!r}")

        if kind not in CONDITION_KINDS:
            raise ValidationError(f"Unknown condition kind: {kind}")

        if kind == "time-based":
            if 'targetTime' not in parameters:
                raise ValidationError("time-based condition requires a targetTime")
            try:
                parameters['targetTime'] = parse_timestamp(parameters['targetTime']).isoformat()
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid targetTime: {parameters['targetTime']!r}") from e

        return Condition(kind=kind, parameters=parameters)

    def get_rule(self, rule_id: str) -> AutomationRule:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found")
        return rule

    def rules_for_file(self, file_id: str) -> List[AutomationRule]:
        return [rule for rule in self._rules.values() if rule.file_id == file_id]

    def active_rules(self) -> List[AutomationRule]:
        return [rule for rule in self._rules.values() if rule.is_active]

    def set_active(self, rule_id: str, active: bool) -> AutomationRule:
        rule = self.get_rule(rule_id)
        previous = (rule.is_active, rule.updated_at)

        def undo() -> None:
            rule.is_active, rule.updated_at = previous

        rule.is_active = active
        rule.updated_at = utcnow()
        self._persist(undo)
        logger.info(f"Rule {rule_id} {'activated' if active else 'deactivated'}")
        return rule

    async def evaluate(self, rule: AutomationRule) -> bool:
        """
        Check every condition of a rule and record each result. If a verifier
        raises, that condition and every one after it is recorded as unmet
        before the error propagates.

        Returns:
            True if all conditions are met (vacuously true for no conditions);
            always False for an inactive rule, which is left untouched
        """
        if not rule.is_active:
            return False

        all_met = True
        try:
            for position, condition in enumerate(rule.conditions):
                try:
                    is_met = await self._check_condition(rule, condition)
                except Exception:
                    checked_at = utcnow()
                    for unchecked in rule.conditions[position:]:
                        unchecked.is_met = False
                        unchecked.last_checked = checked_at
                    raise
                condition.is_met = is_met
                condition.last_checked = utcnow()
                if not is_met:
                    all_met = False
        finally:
            rule.updated_at = utcnow()
            self._on_change()

        return all_met

    async def _check_condition(self, rule: AutomationRule, condition: Condition) -> bool:
        if condition.kind == "time-based":
            try:
                target = parse_timestamp(condition.parameters['targetTime'])
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Rule {rule.id} has a time-based condition without a valid targetTime")
                return False
            return utcnow() >= target

        verifier = self.verifiers.get(condition.kind)
        if verifier is None:
            logger.warning(f"No verifier registered for {condition.kind} conditions (rule {rule.id})")
            return False

        try:
            return bool(await verifier.verify(dict(condition.parameters)))
        except DriveError:
            raise
        except Exception as e:
            raise CollaboratorError(f"verifier.{condition.kind}", e) from e

    async def execute(self, rule: AutomationRule) -> None:
        """
        Dispatch the action implied by the rule's kind.

        Raises:
            CollaboratorError: If the action handler fails with a non-engine error
        """
        handler = self._actions.get(rule.kind)
        if handler is None:
            logger.info(f"No action handler for {rule.kind}; rule {rule.id} on file {rule.file_id} fired")
        else:
            try:
                await handler(rule)
            except DriveError:
                raise
            except Exception as e:
                raise CollaboratorError(f"action.{rule.kind}", e) from e

        rule.fire_count += 1
        rule.last_fired_at = utcnow()
        rule.updated_at = rule.last_fired_at
        logger.info(f"Executed {rule.kind} rule {rule.id} for file {rule.file_id}")
        self._on_change()

    async def execute_rule(self, rule_id: str) -> bool:
        """
        Evaluate a rule and execute it if all of its conditions hold.

        Returns:
            True if the rule fired
        """
        rule = self.get_rule(rule_id)
        if not rule.is_active:
            return False
        if await self.evaluate(rule):
            await self.execute(rule)
            return True
        return False

    async def sweep_once(self) -> SweepResult:
        """
        Evaluate every active rule once, executing the satisfied ones. A
        failing rule is logged and skipped so the rest of the sweep proceeds.
        """
        result = SweepResult()
        for rule in self.active_rules():
            result.evaluated.append(rule.id)
            try:
                if await self.evaluate(rule):
                    await self.execute(rule)
                    result.fired.append(rule.id)
            except Exception as e:
                logger.error(f"Failed to execute rule {rule.id}: {e}", exc_info=True)
                result.failed[rule.id] = str(e)

        logger.info(
            f"Rule sweep complete: {len(result.evaluated)} evaluated, "
            f"{len(result.fired)} fired, {len(result.failed)} failed"
        )
        return result

    def remove_file(self, file_id: str) -> int:
        """
        Drop every rule attached to a file (cascade delete). Does not persist.

        Returns:
            Number of rules removed
        """
        doomed = [rule_id for rule_id, rule in self._rules.items() if rule.file_id == file_id]
        for rule_id in doomed:
            del self._rules[rule_id]
        return len(doomed)

    def export_table(self) -> List[AutomationRule]:
        return list(self._rules.values())

    def load_table(self, rules: Iterable[AutomationRule], replace: bool = False) -> None:
        if replace:
            self._rules.clear()
        for rule in rules:
            self._rules[rule.id] = rule
