"""
Tests for recurring templates and inline recurring series.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from balance_keeper.ledger.errors import (
    InvalidAmountError,
    InvalidPatchError,
    InvalidRecurrenceError,
    NotFoundError,
    TemplateInactiveOrExpiredError,
)
from balance_keeper.models import (
    Direction,
    Frequency,
    RecordedStatus,
    TemplateDraft,
    TemplatePatch,
    TransactionFilters,
    TransactionStatus,
)
from balance_keeper.models.audit import AuditEventType


def template_draft(owner_id, account_id, **overrides) -> TemplateDraft:
    data = {
        "owner_id": owner_id,
        "name": "Rent",
        "account_id": account_id,
        "title": "Rent",
        "amount": Decimal("1200.00"),
        "direction": Direction.EXPENSE,
        "frequency": Frequency.MONTHLY,
        "start_date": date(2024, 1, 31),
    }
    data.update(overrides)
    return TemplateDraft(**data)


class TestTemplateGeneration:
    """Tests for generate_next_from_template."""

    async def test_month_end_schedule(self, service, account, owner_id):
        """Scenario E: a monthly template from 2024-01-31 clamps without drifting."""
        template = await service.create_template(template_draft(owner_id, account.id))
        assert template.next_occurrence == date(2024, 1, 31)

        seen = []
        for _ in range(3):
            await service.generate_next_from_template(owner_id, template.id)
            template = (await service.list_templates(owner_id))[0]
            seen.append(template.next_occurrence)

        assert seen == [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]

    async def test_generated_transaction_copies_template(self, service, account, owner_id):
        """Test the payload and metadata of a generated occurrence."""
        template = await service.create_template(template_draft(owner_id, account.id))
        transaction = await service.generate_next_from_template(owner_id, template.id)

        assert transaction.occurrence_date == date(2024, 1, 31)
        assert transaction.title == "Rent"
        assert transaction.amount == Decimal("1200.00")
        assert transaction.direction == Direction.EXPENSE
        assert transaction.recorded_status == RecordedStatus.PENDING
        assert transaction.is_recurring
        assert transaction.frequency == Frequency.MONTHLY
        assert transaction.source_template_id == template.id

    async def test_generated_transaction_does_not_move_balance(self, service, account, owner_id):
        """Test that generated occurrences start pending."""
        template = await service.create_template(template_draft(owner_id, account.id))
        await service.generate_next_from_template(owner_id, template.id)
        assert await service.get_account_balance(owner_id, account.id) == Decimal("1000.00")

    async def test_past_occurrence_is_overdue(self, service, account, owner_id):
        """Test that an occurrence dated before today resolves to overdue."""
        template = await service.create_template(template_draft(owner_id, account.id))
        transaction = await service.generate_next_from_template(owner_id, template.id)
        assert transaction.status == TransactionStatus.OVERDUE

    async def test_inactive_template_rejected(self, service, account, owner_id):
        """Test that a switched-off template cannot generate."""
        template = await service.create_template(template_draft(owner_id, account.id))
        await service.toggle_template(owner_id, template.id)

        with pytest.raises(TemplateInactiveOrExpiredError):
            await service.generate_next_from_template(owner_id, template.id)
        assert await service.list_transactions(owner_id) == []

    async def test_template_deactivates_after_end_date(self, service, account, owner_id):
        """Test that the template switches off once it passes its end date."""
        template = await service.create_template(
            template_draft(
                owner_id,
                account.id,
                start_date=date(2024, 1, 10),
                end_date=date(2024, 2, 10),
            )
        )
        await service.generate_next_from_template(owner_id, template.id)
        await service.generate_next_from_template(owner_id, template.id)

        template = (await service.list_templates(owner_id))[0]
        assert not template.active
        assert template.next_occurrence == date(2024, 3, 10)

        with pytest.raises(TemplateInactiveOrExpiredError):
            await service.generate_next_from_template(owner_id, template.id)
        assert len(await service.list_transactions(owner_id)) == 2

    async def test_exhausted_template_cannot_be_reactivated(self, service, account, owner_id):
        """Test that toggling an exhausted template back on is rejected."""
        template = await service.create_template(
            template_draft(owner_id, account.id, start_date=date(2024, 1, 10), end_date=date(2024, 1, 10))
        )
        await service.generate_next_from_template(owner_id, template.id)

        with pytest.raises(TemplateInactiveOrExpiredError):
            await service.toggle_template(owner_id, template.id)

    async def test_unknown_template(self, service, owner_id):
        """Test that a missing template is reported as not found."""
        with pytest.raises(NotFoundError):
            await service.generate_next_from_template(owner_id, uuid4())

    async def test_other_owners_template_is_not_found(self, service, account, owner_id):
        """Test that templates are scoped by owner."""
        template = await service.create_template(template_draft(owner_id, account.id))
        with pytest.raises(NotFoundError):
            await service.generate_next_from_template(uuid4(), template.id)

    async def test_failed_generation_leaves_template_alone(
        self, service, storage, account, owner_id, monkeypatch
    ):
        """Test that the transaction and the advance commit together."""
        template = await service.create_template(template_draft(owner_id, account.id))

        async def failing_update(updated):
            raise RuntimeError("write failed")

        monkeypatch.setattr(storage.templates, "update_template", failing_update)

        with pytest.raises(RuntimeError):
            await service.generate_next_from_template(owner_id, template.id)

        assert await service.list_transactions(owner_id) == []
        stored = await storage.templates.get_template(owner_id, template.id)
        assert stored.next_occurrence == date(2024, 1, 31)


class TestGenerateDue:
    """Tests for catching up due templates."""

    async def test_catches_up_missed_periods(self, service, account, owner_id):
        """Test one occurrence per missed period up to the as-of day."""
        await service.create_template(
            template_draft(owner_id, account.id, start_date=date(2024, 1, 5))
        )

        generated = await service.generate_due(owner_id, as_of=date(2024, 3, 15))

        assert [t.occurrence_date for t in generated] == [
            date(2024, 1, 5),
            date(2024, 2, 5),
            date(2024, 3, 5),
        ]
        template = (await service.list_templates(owner_id))[0]
        assert template.next_occurrence == date(2024, 4, 5)

    async def test_nothing_due(self, service, account, owner_id):
        """Test that a future template generates nothing."""
        await service.create_template(
            template_draft(owner_id, account.id, start_date=date(2024, 6, 1))
        )
        assert await service.generate_due(owner_id) == []

    async def test_skips_inactive(self, service, account, owner_id):
        """Test that switched-off templates are not due."""
        template = await service.create_template(
            template_draft(owner_id, account.id, start_date=date(2024, 1, 5))
        )
        await service.toggle_template(owner_id, template.id)
        assert await service.generate_due(owner_id) == []

    async def test_stops_at_end_date(self, service, account, owner_id):
        """Test that catch-up stops at the template's end date."""
        await service.create_template(
            template_draft(
                owner_id,
                account.id,
                frequency=Frequency.WEEKLY,
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 10),
            )
        )
        generated = await service.generate_due(owner_id, as_of=date(2024, 3, 31))
        assert [t.occurrence_date for t in generated] == [date(2024, 3, 1), date(2024, 3, 8)]


class TestTemplateManagement:
    """Tests for template create/update/delete/toggle."""

    async def test_invalid_amount(self, service, account, owner_id):
        """Test that a template needs a valid amount."""
        with pytest.raises(InvalidAmountError):
            await service.create_template(
                template_draft(owner_id, account.id, amount=Decimal("0"))
            )

    async def test_end_before_start(self, service, account, owner_id):
        """Test that a template cannot end before it starts."""
        with pytest.raises(InvalidRecurrenceError):
            await service.create_template(
                template_draft(owner_id, account.id, end_date=date(2023, 12, 1))
            )

    async def test_update_payload(self, service, account, owner_id):
        """Test that payload edits apply to the next occurrence."""
        template = await service.create_template(template_draft(owner_id, account.id))
        await service.update_template(
            owner_id, template.id, TemplatePatch(amount=Decimal("1250.00"), title="Rent 2024")
        )
        transaction = await service.generate_next_from_template(owner_id, template.id)
        assert transaction.amount == Decimal("1250.00")
        assert transaction.title == "Rent 2024"

    async def test_update_cannot_clear_name(self, service, account, owner_id):
        """Test that a template patch cannot set a required field to None."""
        template = await service.create_template(template_draft(owner_id, account.id))
        with pytest.raises(InvalidPatchError):
            await service.update_template(owner_id, template.id, TemplatePatch(name=None))
        assert (await service.list_templates(owner_id))[0].name == "Rent"

    async def test_update_end_date_before_next_deactivates(self, service, account, owner_id):
        """Test that pulling the end date in switches the template off."""
        template = await service.create_template(
            template_draft(owner_id, account.id, start_date=date(2024, 1, 5))
        )
        await service.generate_next_from_template(owner_id, template.id)
        updated = await service.update_template(
            owner_id, template.id, TemplatePatch(end_date=date(2024, 1, 20))
        )
        assert not updated.active

    async def test_delete_keeps_generated(self, service, account, owner_id):
        """Test that deleting a template keeps what it generated."""
        template = await service.create_template(template_draft(owner_id, account.id))
        await service.generate_next_from_template(owner_id, template.id)
        await service.delete_template(owner_id, template.id)

        assert await service.list_templates(owner_id) == []
        assert len(await service.list_transactions(owner_id)) == 1

    async def test_list_active_only(self, service, account, owner_id):
        """Test active-only listing."""
        first = await service.create_template(template_draft(owner_id, account.id, name="A"))
        await service.create_template(template_draft(owner_id, account.id, name="B"))
        await service.toggle_template(owner_id, first.id)

        active = await service.list_templates(owner_id, active_only=True)
        assert [t.name for t in active] == ["B"]

    async def test_audit_trail(self, service, audit_storage, account, owner_id):
        """Test that template changes are audited."""
        template = await service.create_template(template_draft(owner_id, account.id))
        await service.generate_next_from_template(owner_id, template.id)
        await service.toggle_template(owner_id, template.id)

        events = await audit_storage.get_events_by_entity("template", template.id)
        assert {e.event_type for e in events} == {
            AuditEventType.TEMPLATE_CREATED,
            AuditEventType.TEMPLATE_ADVANCED,
            AuditEventType.TEMPLATE_TOGGLED,
        }


class TestInlineRecurrence:
    """Tests for recurring transactions created without a template."""

    async def test_series_up_to_end_date(self, service, account, make_draft, owner_id):
        """Test one pending occurrence per period through the end date."""
        origin = await service.create_transaction(
            make_draft(
                title="Gym",
                amount=Decimal("30.00"),
                occurrence_date=date(2024, 3, 1),
                is_recurring=True,
                frequency=Frequency.MONTHLY,
                recurrence_end_date=date(2024, 6, 1),
            )
        )

        series = await service.list_transactions(owner_id)
        generated = sorted(
            (t for t in series if t.recurrence_origin_id == origin.id),
            key=lambda t: t.occurrence_date,
        )
        assert [t.occurrence_date for t in generated] == [
            date(2024, 4, 1),
            date(2024, 5, 1),
            date(2024, 6, 1),
        ]
        assert all(t.recorded_status == RecordedStatus.PENDING for t in generated)
        assert all(t.title == "Gym" for t in generated)
        # Only the paid origin touches the balance
        assert await service.get_account_balance(owner_id, account.id) == Decimal("970.00")

    async def test_series_uses_lookahead_without_end(self, service, account, make_draft, owner_id):
        """Test the default twelve-month window from today."""
        origin = await service.create_transaction(
            make_draft(
                occurrence_date=date(2024, 3, 15),
                status=RecordedStatus.PENDING,
                is_recurring=True,
                frequency=Frequency.MONTHLY,
            )
        )
        generated = [
            t for t in await service.list_transactions(owner_id)
            if t.recurrence_origin_id == origin.id
        ]
        assert len(generated) == 12
        assert max(t.occurrence_date for t in generated) == date(2025, 3, 15)

    async def test_end_before_start_rejected(self, service, make_draft, owner_id):
        """Test that an end date before the origin is rejected."""
        with pytest.raises(InvalidRecurrenceError):
            await service.create_transaction(
                make_draft(
                    is_recurring=True,
                    frequency=Frequency.WEEKLY,
                    recurrence_end_date=date(2024, 1, 1),
                )
            )
        assert await service.list_transactions(owner_id) == []

    async def test_recurring_without_frequency_rejected(self, service, make_draft):
        """Test that a recurring draft needs a frequency."""
        with pytest.raises(InvalidRecurrenceError):
            await service.create_transaction(make_draft(is_recurring=True))

    async def test_series_audited_once(self, service, audit_storage, make_draft, owner_id):
        """Test a single recurrences_generated event for the batch."""
        origin = await service.create_transaction(
            make_draft(
                is_recurring=True,
                frequency=Frequency.WEEKLY,
                recurrence_end_date=date(2024, 4, 5),
            )
        )
        events = await audit_storage.get_events_by_entity("transaction", origin.id)
        generated = [e for e in events if e.event_type == AuditEventType.RECURRENCES_GENERATED]
        assert len(generated) == 1
        assert generated[0].details["count"] == 3

    async def test_filter_by_series_status(self, service, make_draft, owner_id):
        """Test that future occurrences list as pending."""
        await service.create_transaction(
            make_draft(
                is_recurring=True,
                frequency=Frequency.DAILY,
                recurrence_end_date=date(2024, 3, 18),
            )
        )
        pending = await service.list_transactions(
            owner_id, TransactionFilters(status=TransactionStatus.PENDING)
        )
        assert len(pending) == 3
