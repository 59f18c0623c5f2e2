"""Lifecycle state machines for filings and rule versions.

Provides declarative state transitions bound directly to the ORM model's
``status`` column, so firing an event updates the model in place. Illegal
transitions raise ``TransitionNotAllowed`` before anything is written;
services translate that into ``INVALID_STATUS``.
"""

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog
from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from src.core.exceptions import InvalidStateError, ValidationError
from src.models.filing import FilingStatus
from src.models.rule import RuleStatus

if TYPE_CHECKING:
    from src.models.filing import TaxFiling
    from src.models.rule import TaxRuleVersion

logger = structlog.get_logger()


class FilingLifecycle(StateMachine):
    """State machine for a tax filing.

    States match the FilingStatus enum:
    - draft: being edited (initial)
    - ready: complete enough to submit, still editable
    - submitted: finalized (final)

    Transitions:
    - mark_ready: draft -> ready (requires at least one income item)
    - unmark_ready: ready -> draft
    - submit: draft/ready -> submitted (only fired by SubmissionService)
    """

    draft = State(initial=True, value=FilingStatus.DRAFT)
    ready = State(value=FilingStatus.READY)
    submitted = State(final=True, value=FilingStatus.SUBMITTED)

    mark_ready = draft.to(ready, validators="ensure_has_income")
    unmark_ready = ready.to(draft)
    submit = draft.to(submitted) | ready.to(submitted)

    def __init__(self, filing: "TaxFiling") -> None:
        """Bind the machine to a filing's current status.

        Args:
            filing: TaxFiling whose ``status`` the machine reads and writes
        """
        self.filing = filing
        super().__init__(model=filing, state_field="status")

    def ensure_has_income(self) -> None:
        if not self.filing.income_items:
            raise ValidationError(
                "INCOMPLETE_FILING", "Filing must have at least one income item"
            )

    def after_transition(self, event: str, source: State, target: State) -> None:
        logger.info(
            "filing_status_changed",
            filing_id=str(self.filing.id),
            transition=str(event),
            from_status=source.value.value,
            to_status=target.value.value,
        )


class RuleVersionLifecycle(StateMachine):
    """State machine for a tax rule version.

    Transitions:
    - activate: draft -> active (requires brackets that partition [0, inf))
    - deprecate: draft/active -> deprecated
    """

    draft = State(initial=True, value=RuleStatus.DRAFT)
    active = State(value=RuleStatus.ACTIVE)
    deprecated = State(final=True, value=RuleStatus.DEPRECATED)

    activate = draft.to(
        active, validators=["ensure_has_brackets", "ensure_brackets_partition"]
    )
    deprecate = draft.to(deprecated) | active.to(deprecated)

    def __init__(self, rule_version: "TaxRuleVersion") -> None:
        self.rule_version = rule_version
        super().__init__(model=rule_version, state_field="status")

    def ensure_has_brackets(self) -> None:
        if not self.rule_version.brackets:
            raise ValidationError(
                "MISSING_BRACKETS", "Rule version must have at least one tax bracket"
            )

    def ensure_brackets_partition(self) -> None:
        """Brackets in order must cover [0, inf) with no gap or overlap.

        The first starts at 0, each starts where the previous one ends, and
        only the last is unbounded.
        """
        brackets = sorted(self.rule_version.brackets, key=lambda b: b.bracket_order)
        expected_min = Decimal("0")
        for position, bracket in enumerate(brackets, start=1):
            if Decimal(bracket.min_income) != expected_min:
                raise ValidationError(
                    "INVALID_BRACKET",
                    f"Bracket {bracket.bracket_order} starts at {bracket.min_income}; "
                    f"expected {expected_min}",
                )
            is_last = position == len(brackets)
            if bracket.max_income is None:
                if not is_last:
                    raise ValidationError(
                        "INVALID_BRACKET",
                        f"Only the last bracket may be unbounded "
                        f"(bracket {bracket.bracket_order} has no max_income)",
                    )
                return
            expected_min = Decimal(bracket.max_income)
        raise ValidationError(
            "INVALID_BRACKET", "The last bracket must be unbounded (max_income null)"
        )

    def after_transition(self, event: str, source: State, target: State) -> None:
        logger.info(
            "rule_version_status_changed",
            rule_version_id=str(self.rule_version.id),
            jurisdiction=self.rule_version.jurisdiction,
            tax_year=self.rule_version.tax_year,
            transition=str(event),
            from_status=source.value.value,
            to_status=target.value.value,
        )


def fire(machine: StateMachine, event: str, **kwargs: Any) -> None:
    """Send an event, translating a disallowed transition to INVALID_STATUS.

    Args:
        machine: Lifecycle machine bound to a model
        event: Transition name, e.g. ``"mark_ready"``
        **kwargs: Passed through to the transition callbacks

    Raises:
        InvalidStateError: If the event is not allowed from the current state
    """
    try:
        machine.send(event, **kwargs)
    except TransitionNotAllowed as exc:
        current = machine.current_state.value
        raise InvalidStateError(
            "INVALID_STATUS",
            f"Cannot {event.replace('_', ' ')} from status {current.value}",
        ) from exc


__all__ = [
    "FilingLifecycle",
    "RuleVersionLifecycle",
    "TransitionNotAllowed",
    "fire",
]
