"""
Recurring Generator

Two ways a series produces transactions:

1. Templates. A RecurringTemplate generates one pending transaction per
   call to generate_next(), dated at its next_occurrence, and then moves
   next_occurrence forward by one period. An external scheduler calls
   generate_due() to catch every due template up.
2. Inline series. A transaction created with is_recurring set and no
   template gets its future occurrences materialized at once, up to its
   recurrence end date or a look-ahead window.

Both paths create transactions through the lifecycle controller, so
validation, status resolution and balance posting are the same as for a
hand-entered transaction.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from balance_keeper.ledger.clock import Clock
from balance_keeper.ledger.errors import (
    InvalidRecurrenceError,
    NotFoundError,
    TemplateInactiveOrExpiredError,
)
from balance_keeper.ledger.lifecycle import TransactionLifecycleController
from balance_keeper.ledger.periods import add_months, next_occurrence, occurrences_after
from balance_keeper.models.audit import AuditEventBuilder, AuditEventType
from balance_keeper.models.ledger import (
    RecordedStatus,
    RecurringTemplate,
    TemplateDraft,
    TemplatePatch,
    Transaction,
    TransactionDraft,
    utcnow,
)
from balance_keeper.services.storage import LedgerStorage
from balance_keeper.validation import LedgerValidator


class RecurringGenerator:
    """Template management and occurrence generation."""

    def __init__(
        self,
        storage: LedgerStorage,
        lifecycle: TransactionLifecycleController,
        clock: Clock,
        lookahead_months: int = 12,
        validator: Optional[LedgerValidator] = None,
    ):
        self._storage = storage
        self._lifecycle = lifecycle
        self._clock = clock
        self._lookahead_months = lookahead_months
        self._validator = validator or LedgerValidator()
        self._logger = structlog.get_logger(__name__)

    async def _require_template(self, owner_id: UUID, template_id: UUID) -> RecurringTemplate:
        template = await self._storage.templates.get_template(owner_id, template_id)
        if template is None:
            raise NotFoundError("template", template_id)
        return template

    # =========================================================================
    # Template management
    # =========================================================================

    async def create_template(self, draft: TemplateDraft) -> RecurringTemplate:
        """The first occurrence is the start date itself."""
        self._validator.validate_template_draft(draft)

        async with self._lifecycle.unit_of_work(draft.owner_id, "create_template") as events:
            await self._lifecycle.require_account(
                draft.owner_id, draft.account_id, for_new_posting=True
            )
            template = RecurringTemplate(
                **draft.model_dump(),
                next_occurrence=draft.start_date,
            )
            await self._storage.templates.insert_template(template)
            events.append(
                AuditEventBuilder.template_event(AuditEventType.TEMPLATE_CREATED, template)
            )

        return template

    async def update_template(
        self,
        owner_id: UUID,
        template_id: UUID,
        patch: TemplatePatch,
    ) -> RecurringTemplate:
        """
        Edit a template's payload or end date.

        Moving the end date before the pending next occurrence switches the
        template off.
        """
        self._validator.validate_template_patch(patch)
        changes = patch.model_dump(exclude_unset=True)

        async with self._lifecycle.unit_of_work(owner_id, "update_template", template_id) as events:
            existing = await self._require_template(owner_id, template_id)
            end_date = changes.get("end_date")
            if end_date is not None and end_date < existing.start_date:
                raise InvalidRecurrenceError("Template end date cannot be before its start date")

            data = existing.model_dump()
            data.update(changes)
            data["updated_at"] = utcnow()
            updated = RecurringTemplate.model_validate(data)
            if updated.is_exhausted:
                updated = updated.model_copy(update={"active": False})

            await self._storage.templates.update_template(updated)
            events.append(
                AuditEventBuilder.template_event(
                    AuditEventType.TEMPLATE_UPDATED,
                    updated,
                    {"changed_fields": sorted(changes)},
                )
            )

        return updated

    async def delete_template(self, owner_id: UUID, template_id: UUID) -> None:
        """Transactions already generated from the template are kept."""
        async with self._lifecycle.unit_of_work(owner_id, "delete_template", template_id) as events:
            template = await self._require_template(owner_id, template_id)
            await self._storage.templates.delete_template(owner_id, template_id)
            events.append(
                AuditEventBuilder.template_event(AuditEventType.TEMPLATE_DELETED, template)
            )

    async def toggle_template(self, owner_id: UUID, template_id: UUID) -> RecurringTemplate:
        """Flip the active flag. An exhausted template cannot be switched back on."""
        async with self._lifecycle.unit_of_work(owner_id, "toggle_template", template_id) as events:
            template = await self._require_template(owner_id, template_id)
            if not template.active and template.is_exhausted:
                raise TemplateInactiveOrExpiredError(template_id, "past its end date")

            toggled = template.model_copy(update={
                "active": not template.active,
                "updated_at": utcnow(),
            })
            await self._storage.templates.update_template(toggled)
            events.append(
                AuditEventBuilder.template_event(AuditEventType.TEMPLATE_TOGGLED, toggled)
            )

        return toggled

    async def list_templates(
        self,
        owner_id: UUID,
        active_only: bool = False,
    ) -> list[RecurringTemplate]:
        return await self._storage.templates.list_templates(owner_id, active_only=active_only)

    async def due_templates(
        self,
        owner_id: UUID,
        as_of: Optional[date] = None,
    ) -> list[RecurringTemplate]:
        """Active templates whose next occurrence is on or before `as_of`."""
        return await self._storage.templates.list_templates(
            owner_id,
            active_only=True,
            due_on=as_of or self._clock.today(),
        )

    # =========================================================================
    # Generation
    # =========================================================================

    def _occurrence_from_template(self, template: RecurringTemplate) -> TransactionDraft:
        return TransactionDraft(
            owner_id=template.owner_id,
            account_id=template.account_id,
            category_id=template.category_id,
            title=template.title,
            description=template.description,
            amount=template.amount,
            direction=template.direction,
            status=RecordedStatus.PENDING,
            occurrence_date=template.next_occurrence,
            is_recurring=True,
            frequency=template.frequency,
            source_template_id=template.id,
        )

    async def generate_next(self, owner_id: UUID, template_id: UUID) -> Transaction:
        """
        Create the template's next occurrence and advance the template.

        The transaction and the advanced template are written in one unit.
        Advancement is anchored on start_date, so a monthly template that
        starts on the 31st clamps in short months and returns to the 31st
        afterwards.
        """
        async with self._lifecycle.unit_of_work(owner_id, "generate_next", template_id) as events:
            template = await self._require_template(owner_id, template_id)
            if not template.active:
                raise TemplateInactiveOrExpiredError(template_id, "template is inactive")
            if template.is_exhausted:
                raise TemplateInactiveOrExpiredError(template_id, "past its end date")

            transaction = await self._lifecycle.create(self._occurrence_from_template(template))

            following = next_occurrence(
                template.start_date,
                template.next_occurrence,
                template.frequency,
            )
            advanced = template.model_copy(update={
                "next_occurrence": following,
                "active": template.end_date is None or following <= template.end_date,
                "updated_at": utcnow(),
            })
            await self._storage.templates.update_template(advanced)
            events.append(
                AuditEventBuilder.template_event(
                    AuditEventType.TEMPLATE_ADVANCED,
                    advanced,
                    {"generated_transaction_id": str(transaction.id)},
                )
            )

        return transaction

    async def generate_due(
        self,
        owner_id: UUID,
        as_of: Optional[date] = None,
    ) -> list[Transaction]:
        """
        Catch every due template up to `as_of`.

        A template several periods behind produces one transaction per
        missed period.
        """
        as_of = as_of or self._clock.today()
        generated = []

        for template in await self.due_templates(owner_id, as_of):
            current = template
            while current.active and not current.is_exhausted and current.next_occurrence <= as_of:
                generated.append(await self.generate_next(owner_id, current.id))
                current = await self._require_template(owner_id, current.id)

        self._logger.info(
            "due_templates_generated",
            owner_id=str(owner_id),
            as_of=as_of.isoformat(),
            generated=len(generated),
        )
        return generated

    async def expand_inline(self, origin: Transaction) -> list[Transaction]:
        """
        Materialize an inline series after its origin transaction.

        One pending occurrence per period strictly after the origin date,
        up to and including the recurrence end date, or today plus the
        look-ahead window when the series has no end.
        """
        if not origin.is_recurring or origin.frequency is None:
            return []

        end = origin.recurrence_end_date or add_months(
            self._clock.today(), self._lookahead_months
        )
        drafts = [
            TransactionDraft(
                owner_id=origin.owner_id,
                account_id=origin.account_id,
                category_id=origin.category_id,
                title=origin.title,
                description=origin.description,
                amount=origin.amount,
                direction=origin.direction,
                status=RecordedStatus.PENDING,
                occurrence_date=occurrence,
                is_recurring=True,
                frequency=origin.frequency,
                recurrence_end_date=origin.recurrence_end_date,
                recurrence_origin_id=origin.id,
                tags=list(origin.tags),
                notes=origin.notes,
            )
            for occurrence in occurrences_after(origin.occurrence_date, origin.frequency, end)
        ]
        if not drafts:
            return []

        async with self._lifecycle.unit_of_work(origin.owner_id, "expand_recurrence", origin.id) as events:
            generated = await self._lifecycle.create_many(drafts)
            events.append(AuditEventBuilder.recurrences_generated(origin, generated))

        return generated
