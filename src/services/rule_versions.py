"""Rule version store and lifecycle manager.

Owns creation, activation and deprecation of TaxRuleVersion rows and edits
to their brackets, credit rules and deduction rules. ``find_active`` is the
only lookup the calculation path uses.
"""

import re
import uuid
from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import violates_constraint
from src.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from src.lifecycle import RuleVersionLifecycle, fire
from src.models.audit import AuditAction
from src.models.rule import (
    DeductionRule,
    RuleStatus,
    TaxBracket,
    TaxCreditRule,
    TaxRuleVersion,
)
from src.services.audit import ENTITY_RULE_VERSION, AuditEmitter, AuditEvent
from src.services.snapshots import (
    bracket_values,
    credit_rule_values,
    deduction_rule_values,
    rule_version_values,
)
from src.tax.year_config import get_rule_preset

logger = structlog.get_logger()

ACTIVE_INDEX_MARKERS = ("uq_tax_rule_versions_one_active", "tax_rule_versions.jurisdiction")

# Upper-case authority code, also the prefix of confirmation numbers
JURISDICTION_PATTERN = re.compile(r"^[A-Z]{2,50}$")


def validate_jurisdiction(jurisdiction: str) -> str:
    """Reject jurisdiction codes that are not 2-50 upper-case letters.

    Raises:
        ValidationError: INVALID_JURISDICTION
    """
    if not isinstance(jurisdiction, str) or not JURISDICTION_PATTERN.match(jurisdiction):
        raise ValidationError(
            "INVALID_JURISDICTION",
            f"jurisdiction must be 2-50 upper-case letters (got {jurisdiction!r})",
        )
    return jurisdiction


def _decimal(value: Any, field_name: str, code: str) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(code, f"{field_name} must be a decimal number") from exc


def _optional_decimal(value: Any, field_name: str, code: str) -> Decimal | None:
    return None if value is None else _decimal(value, field_name, code)


def build_bracket(data: Mapping[str, Any], default_order: int) -> TaxBracket:
    """Validate bracket input and build an unattached TaxBracket.

    Raises:
        ValidationError: INVALID_BRACKET when bounds or rate are out of range
    """
    min_income = _decimal(data.get("min_income", 0), "min_income", "INVALID_BRACKET")
    max_income = _optional_decimal(data.get("max_income"), "max_income", "INVALID_BRACKET")
    rate = _decimal(data.get("rate"), "rate", "INVALID_BRACKET")

    if min_income < 0:
        raise ValidationError("INVALID_BRACKET", "Bracket min_income must not be negative")
    if max_income is not None and max_income <= min_income:
        raise ValidationError(
            "INVALID_BRACKET", "Bracket max_income must be greater than min_income"
        )
    if not Decimal("0") <= rate <= Decimal("1"):
        raise ValidationError("INVALID_BRACKET", "Bracket rate must be between 0 and 1")

    return TaxBracket(
        min_income=min_income,
        max_income=max_income,
        rate=rate,
        bracket_order=(
            default_order
            if data.get("bracket_order") is None
            else data["bracket_order"]
        ),
    )


def build_credit_rule(data: Mapping[str, Any]) -> TaxCreditRule:
    return TaxCreditRule(
        credit_type=data["credit_type"],
        name=data["name"],
        amount=_decimal(data.get("amount", 0), "amount", "INVALID_AMOUNT"),
        is_refundable=bool(data.get("is_refundable", False)),
        max_amount=_optional_decimal(data.get("max_amount"), "max_amount", "INVALID_AMOUNT"),
        phase_out_start=_optional_decimal(
            data.get("phase_out_start"), "phase_out_start", "INVALID_AMOUNT"
        ),
        phase_out_rate=_optional_decimal(
            data.get("phase_out_rate"), "phase_out_rate", "INVALID_AMOUNT"
        ),
        eligibility_rules=data.get("eligibility_rules"),
    )


def build_deduction_rule(data: Mapping[str, Any]) -> DeductionRule:
    return DeductionRule(
        deduction_type=data["deduction_type"],
        name=data["name"],
        max_amount=_optional_decimal(data.get("max_amount"), "max_amount", "INVALID_AMOUNT"),
        max_percentage=_optional_decimal(
            data.get("max_percentage"), "max_percentage", "INVALID_AMOUNT"
        ),
        eligibility_rules=data.get("eligibility_rules"),
    )


class RuleVersionService:
    """Manages rule versions within one unit of work.

    Usage:
        service = RuleVersionService(session, audit)
        version = await service.create("CA 2024", "CA", 2024, date(2024, 1, 1), ...)
        await service.activate(version.id, actor=admin_id)
    """

    def __init__(self, session: AsyncSession, audit: AuditEmitter) -> None:
        self.session = session
        self.audit = audit

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, rule_version_id: uuid.UUID) -> TaxRuleVersion:
        rule_version = await self.session.get(TaxRuleVersion, rule_version_id)
        if rule_version is None:
            raise NotFoundError("RULE_VERSION_NOT_FOUND", "Tax rule version not found")
        return rule_version

    async def find_active(self, jurisdiction: str, tax_year: int) -> TaxRuleVersion:
        """Return the single ACTIVE version for a jurisdiction and year.

        Raises:
            NotFoundError: NO_ACTIVE_RULES if none is active
        """
        result = await self.session.execute(
            select(TaxRuleVersion).where(
                TaxRuleVersion.jurisdiction == jurisdiction,
                TaxRuleVersion.tax_year == tax_year,
                TaxRuleVersion.status == RuleStatus.ACTIVE,
            )
        )
        rule_version = result.scalar_one_or_none()
        if rule_version is None:
            raise NotFoundError(
                "NO_ACTIVE_RULES", f"No active tax rules for {jurisdiction} - {tax_year}"
            )
        return rule_version

    async def list_versions(self, jurisdiction: str, tax_year: int) -> list[TaxRuleVersion]:
        """All versions for a jurisdiction and year, newest first."""
        result = await self.session.execute(
            select(TaxRuleVersion)
            .where(
                TaxRuleVersion.jurisdiction == jurisdiction,
                TaxRuleVersion.tax_year == tax_year,
            )
            .order_by(TaxRuleVersion.version.desc())
        )
        return list(result.scalars().all())

    async def list_by_status(self, status: RuleStatus) -> list[TaxRuleVersion]:
        result = await self.session.execute(
            select(TaxRuleVersion)
            .where(TaxRuleVersion.status == status)
            .order_by(
                TaxRuleVersion.jurisdiction,
                TaxRuleVersion.tax_year.desc(),
                TaxRuleVersion.version.desc(),
            )
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(
        self,
        name: str,
        jurisdiction: str,
        tax_year: int,
        effective_from: date,
        effective_to: date | None = None,
        brackets: Sequence[Mapping[str, Any]] | None = None,
        credit_rules: Sequence[Mapping[str, Any]] | None = None,
        deduction_rules: Sequence[Mapping[str, Any]] | None = None,
        actor: uuid.UUID | None = None,
    ) -> TaxRuleVersion:
        """Create a DRAFT version numbered one past the highest existing one.

        Args:
            name: Display name
            jurisdiction: Taxing authority code
            tax_year: Tax year the rules apply to
            effective_from: First day the rules apply
            effective_to: Optional last day the rules apply
            brackets: Bracket inputs (min_income, max_income, rate, bracket_order)
            credit_rules: Credit rule inputs
            deduction_rules: Deduction rule inputs
            actor: User performing the change

        Returns:
            The new DRAFT TaxRuleVersion

        Raises:
            ValidationError: INVALID_JURISDICTION or INVALID_BRACKET for bad input
            ConflictError: RULE_VERSION_CONFLICT if a concurrent create took the number
        """
        validate_jurisdiction(jurisdiction)
        if effective_to is not None and effective_to < effective_from:
            raise ValidationError(
                "INVALID_EFFECTIVE_DATES", "effective_to must not precede effective_from"
            )

        bracket_rows = [
            build_bracket(data, default_order=position)
            for position, data in enumerate(brackets or [], start=1)
        ]
        orders = [b.bracket_order for b in bracket_rows]
        if len(orders) != len(set(orders)):
            raise ValidationError("INVALID_BRACKET", "Bracket orders must be unique")

        max_version = await self.session.scalar(
            select(func.max(TaxRuleVersion.version)).where(
                TaxRuleVersion.jurisdiction == jurisdiction,
                TaxRuleVersion.tax_year == tax_year,
            )
        )

        version = (max_version or 0) + 1
        rule_version = TaxRuleVersion(
            name=name,
            jurisdiction=jurisdiction,
            tax_year=tax_year,
            version=version,
            status=RuleStatus.DRAFT,
            effective_from=effective_from,
            effective_to=effective_to,
            created_by=actor,
            brackets=bracket_rows,
            credit_rules=[build_credit_rule(data) for data in credit_rules or []],
            deduction_rules=[build_deduction_rule(data) for data in deduction_rules or []],
        )
        self.session.add(rule_version)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError(
                "RULE_VERSION_CONFLICT",
                f"Version {version} already exists for "
                f"{jurisdiction} {tax_year}",
            ) from exc

        logger.info(
            "rule_version_created",
            rule_version_id=str(rule_version.id),
            jurisdiction=jurisdiction,
            tax_year=tax_year,
            version=rule_version.version,
        )
        await self.audit.emit(
            AuditEvent(
                entity_type=ENTITY_RULE_VERSION,
                entity_id=rule_version.id,
                actor_id=actor,
                action=AuditAction.CREATE,
                new_values=rule_version_values(rule_version),
            )
        )
        return rule_version

    async def activate(
        self, rule_version_id: uuid.UUID, actor: uuid.UUID | None = None
    ) -> TaxRuleVersion:
        """Activate a DRAFT version, deprecating the current ACTIVE one first.

        Both status changes are flushed in the caller's transaction. The old
        version is flushed as DEPRECATED before the new one becomes ACTIVE so
        the one-active index never sees two ACTIVE rows. Audit events for
        both changes are emitted only once both flushes have succeeded.

        Raises:
            InvalidStateError: INVALID_STATUS unless the version is DRAFT
            ValidationError: MISSING_BRACKETS if the version has no brackets,
                INVALID_BRACKET if the brackets do not partition [0, inf)
            ConflictError: ACTIVE_RULE_EXISTS if a concurrent activation won
        """
        rule_version = await self.get(rule_version_id)
        machine = RuleVersionLifecycle(rule_version)
        if rule_version.status != RuleStatus.DRAFT:
            raise InvalidStateError(
                "INVALID_STATUS",
                f"Only DRAFT rule versions can be activated (status is "
                f"{rule_version.status.value})",
            )
        # Checked before the old version is touched
        machine.ensure_has_brackets()
        machine.ensure_brackets_partition()

        result = await self.session.execute(
            select(TaxRuleVersion).where(
                TaxRuleVersion.jurisdiction == rule_version.jurisdiction,
                TaxRuleVersion.tax_year == rule_version.tax_year,
                TaxRuleVersion.status == RuleStatus.ACTIVE,
                TaxRuleVersion.id != rule_version.id,
            )
        )
        previous_active = list(result.scalars().all())
        scope = f"{rule_version.jurisdiction} {rule_version.tax_year}"

        pending: list[AuditEvent] = []
        try:
            for previous in previous_active:
                old_values = rule_version_values(previous)
                fire(RuleVersionLifecycle(previous), "deprecate")
                await self.session.flush()
                pending.append(self._status_change_event(previous, old_values, actor))

            old_values = rule_version_values(rule_version)
            fire(machine, "activate")
            await self.session.flush()
            pending.append(self._status_change_event(rule_version, old_values, actor))
        except IntegrityError as exc:
            await self.session.rollback()
            if violates_constraint(exc, *ACTIVE_INDEX_MARKERS):
                raise ConflictError(
                    "ACTIVE_RULE_EXISTS",
                    f"Another rule version is already active for {scope}",
                ) from exc
            raise

        for event in pending:
            await self.audit.emit(event)
        return rule_version

    async def deprecate(
        self, rule_version_id: uuid.UUID, actor: uuid.UUID | None = None
    ) -> TaxRuleVersion:
        """Deprecate a DRAFT or ACTIVE version.

        Raises:
            ConflictError: ALREADY_DEPRECATED if it is already deprecated
        """
        rule_version = await self.get(rule_version_id)
        if rule_version.status == RuleStatus.DEPRECATED:
            raise ConflictError("ALREADY_DEPRECATED", "Rule version is already deprecated")

        old_values = rule_version_values(rule_version)
        fire(RuleVersionLifecycle(rule_version), "deprecate")
        await self.session.flush()
        await self.audit.emit(self._status_change_event(rule_version, old_values, actor))
        return rule_version

    async def seed_preset(
        self,
        jurisdiction: str,
        tax_year: int,
        actor: uuid.UUID | None = None,
        activate: bool = True,
    ) -> TaxRuleVersion:
        """Create a version from the built-in presets, activating it by default.

        Raises:
            NotFoundError: PRESET_NOT_FOUND if no preset exists for the scope
        """
        try:
            preset = get_rule_preset(jurisdiction, tax_year)
        except ValueError as exc:
            raise NotFoundError("PRESET_NOT_FOUND", str(exc)) from exc

        rule_version = await self.create(
            name=preset.name,
            jurisdiction=preset.jurisdiction,
            tax_year=preset.tax_year,
            effective_from=preset.effective_from,
            effective_to=preset.effective_to,
            brackets=preset.bracket_rows(),
            credit_rules=preset.credit_rule_rows(),
            deduction_rules=preset.deduction_rule_rows(),
            actor=actor,
        )
        if activate:
            rule_version = await self.activate(rule_version.id, actor=actor)
        return rule_version

    # ------------------------------------------------------------------
    # Child edits (DRAFT only)
    # ------------------------------------------------------------------

    async def add_bracket(
        self,
        rule_version_id: uuid.UUID,
        data: Mapping[str, Any],
        actor: uuid.UUID | None = None,
    ) -> TaxBracket:
        rule_version = await self._get_editable(rule_version_id)
        next_order = max((b.bracket_order for b in rule_version.brackets), default=0) + 1
        bracket = build_bracket(data, default_order=next_order)
        if any(b.bracket_order == bracket.bracket_order for b in rule_version.brackets):
            raise ValidationError(
                "INVALID_BRACKET",
                f"Bracket order {bracket.bracket_order} already exists",
            )

        rule_version.brackets.append(bracket)
        await self.session.flush()
        await self._emit_update(rule_version, actor, new_values={"addedBracket": bracket_values(bracket)})
        return bracket

    async def delete_bracket(
        self,
        rule_version_id: uuid.UUID,
        bracket_id: uuid.UUID,
        actor: uuid.UUID | None = None,
    ) -> None:
        rule_version = await self._get_editable(rule_version_id)
        bracket = next((b for b in rule_version.brackets if b.id == bracket_id), None)
        if bracket is None:
            raise NotFoundError("BRACKET_NOT_FOUND", "Tax bracket not found")

        removed = bracket_values(bracket)
        rule_version.brackets.remove(bracket)
        await self.session.flush()
        await self._emit_update(rule_version, actor, old_values={"removedBracket": removed})

    async def add_credit_rule(
        self,
        rule_version_id: uuid.UUID,
        data: Mapping[str, Any],
        actor: uuid.UUID | None = None,
    ) -> TaxCreditRule:
        rule_version = await self._get_editable(rule_version_id)
        rule = build_credit_rule(data)
        rule_version.credit_rules.append(rule)
        await self.session.flush()
        await self._emit_update(
            rule_version, actor, new_values={"addedCreditRule": credit_rule_values(rule)}
        )
        return rule

    async def delete_credit_rule(
        self,
        rule_version_id: uuid.UUID,
        credit_rule_id: uuid.UUID,
        actor: uuid.UUID | None = None,
    ) -> None:
        rule_version = await self._get_editable(rule_version_id)
        rule = next((r for r in rule_version.credit_rules if r.id == credit_rule_id), None)
        if rule is None:
            raise NotFoundError("CREDIT_RULE_NOT_FOUND", "Credit rule not found")

        removed = credit_rule_values(rule)
        rule_version.credit_rules.remove(rule)
        await self.session.flush()
        await self._emit_update(rule_version, actor, old_values={"removedCreditRule": removed})

    async def add_deduction_rule(
        self,
        rule_version_id: uuid.UUID,
        data: Mapping[str, Any],
        actor: uuid.UUID | None = None,
    ) -> DeductionRule:
        rule_version = await self._get_editable(rule_version_id)
        rule = build_deduction_rule(data)
        rule_version.deduction_rules.append(rule)
        await self.session.flush()
        await self._emit_update(
            rule_version,
            actor,
            new_values={"addedDeductionRule": deduction_rule_values(rule)},
        )
        return rule

    async def delete_deduction_rule(
        self,
        rule_version_id: uuid.UUID,
        deduction_rule_id: uuid.UUID,
        actor: uuid.UUID | None = None,
    ) -> None:
        rule_version = await self._get_editable(rule_version_id)
        rule = next(
            (r for r in rule_version.deduction_rules if r.id == deduction_rule_id), None
        )
        if rule is None:
            raise NotFoundError("DEDUCTION_RULE_NOT_FOUND", "Deduction rule not found")

        removed = deduction_rule_values(rule)
        rule_version.deduction_rules.remove(rule)
        await self.session.flush()
        await self._emit_update(
            rule_version, actor, old_values={"removedDeductionRule": removed}
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_editable(self, rule_version_id: uuid.UUID) -> TaxRuleVersion:
        rule_version = await self.get(rule_version_id)
        if not rule_version.is_editable:
            raise InvalidStateError(
                "RULE_NOT_EDITABLE",
                f"Rule version is {rule_version.status.value}; only DRAFT versions "
                "can be edited",
            )
        return rule_version

    @staticmethod
    def _status_change_event(
        rule_version: TaxRuleVersion,
        old_values: dict[str, Any],
        actor: uuid.UUID | None,
    ) -> AuditEvent:
        return AuditEvent(
            entity_type=ENTITY_RULE_VERSION,
            entity_id=rule_version.id,
            actor_id=actor,
            action=AuditAction.STATUS_CHANGE,
            old_values=old_values,
            new_values=rule_version_values(rule_version),
        )

    async def _emit_update(
        self,
        rule_version: TaxRuleVersion,
        actor: uuid.UUID | None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            "rule_version_updated",
            rule_version_id=str(rule_version.id),
            changes=sorted((old_values or new_values or {}).keys()),
        )
        await self.audit.emit(
            AuditEvent(
                entity_type=ENTITY_RULE_VERSION,
                entity_id=rule_version.id,
                actor_id=actor,
                action=AuditAction.UPDATE,
                old_values=old_values,
                new_values=new_values,
            )
        )


__all__ = [
    "RuleVersionService",
    "build_bracket",
    "build_credit_rule",
    "build_deduction_rule",
    "validate_jurisdiction",
]
