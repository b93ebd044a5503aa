"""Tests for ConfirmationEngine.

Run with: pytest tests/test_confirmation_engine.py -v
"""

import threading
from unittest import mock

import pytest
from django.db import connection

from reservations import models as orm
from reservations.domain import PaymentDetails, PaymentMethod, PaymentStatus, ReservationStatus
from reservations.domain.errors import AlreadyProcessedError, ValidationError

ZELLE = PaymentDetails(reference="ZL-1001")


def _ledger(category: str = "M:F") -> tuple[int, int, int]:
    row = orm.InventoryUnit.objects.get(category=category)
    return row.reserved, row.sold, row.capacity - row.reserved - row.sold


@pytest.mark.django_db
class TestConfirm:
    """Tests for ConfirmationEngine.confirm."""

    def test_confirm_commits_inventory_and_numbers_items(self, manager, engine, stock, contact, make_item, notifier):
        stock("M:F", 10)
        group = manager.create_group(
            contact, [make_item("Ana"), make_item("Eva"), make_item("Sol")], PaymentMethod.ZELLE, ZELLE
        )
        result = engine.confirm(group.id, confirmed_by="admin")

        assert result.numbers == ["0001", "0002", "0003"]
        assert [i.number for i in sorted(result.group.items, key=lambda i: i.position)] == result.numbers
        assert result.group.payment_status is PaymentStatus.CONFIRMED
        assert result.group.confirmed_by == "admin"
        assert {i.payment_status for i in result.group.items} == {PaymentStatus.CONFIRMED}
        assert _ledger() == (0, 3, 7)
        assert result.notification_sent
        assert notifier.confirmations == [(group.code, ["0001", "0002", "0003"])]

    def test_second_confirm_is_already_processed(self, manager, engine, stock, contact, make_item):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item(), make_item("Eva")], PaymentMethod.ZELLE, ZELLE)
        engine.confirm(group.id, confirmed_by="admin")
        with pytest.raises(AlreadyProcessedError):
            engine.confirm(group.id, confirmed_by="other-admin")
        assert _ledger() == (0, 2, 8)
        assert orm.Item.objects.exclude(number=None).count() == 2
        assert orm.SequenceCounter.objects.get().current == 3

    def test_lost_race_changes_nothing(self, manager, engine, group_store, stock, contact, make_item, notifier):
        """A confirmation that loses the status update to another one allocates and commits nothing."""
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item(), make_item("Eva")], PaymentMethod.ZELLE, ZELLE)
        real_transition = group_store.transition

        def confirmed_elsewhere(group_id, *args, **kwargs):
            orm.Group.objects.filter(id=group_id).update(payment_status=PaymentStatus.CONFIRMED.value)
            return real_transition(group_id, *args, **kwargs)

        with mock.patch.object(group_store, "transition", side_effect=confirmed_elsewhere):
            with pytest.raises(AlreadyProcessedError) as exc_info:
                engine.confirm(group.id, confirmed_by="admin")

        assert exc_info.value.status == "confirmed"
        assert _ledger() == (2, 0, 8)
        assert not orm.Item.objects.exclude(number=None).exists()
        assert not orm.SequenceCounter.objects.exists()
        assert notifier.confirmations == []

    def test_expired_group_cannot_be_confirmed(self, manager, engine, stock, contact, make_item, clock):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item()], PaymentMethod.ZELLE, ZELLE)
        clock.advance(hours=73)
        with pytest.raises(AlreadyProcessedError) as exc_info:
            engine.confirm(group.id, confirmed_by="admin")
        assert exc_info.value.status == "expired"

    def test_expiry_can_be_waived(self, manager, engine, stock, contact, make_item, clock):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item()], PaymentMethod.ZELLE, ZELLE)
        clock.advance(hours=73)
        result = engine.confirm(group.id, confirmed_by="gateway", enforce_expiry=False)
        assert result.group.payment_status is PaymentStatus.CONFIRMED

    def test_processing_group_can_be_confirmed(self, manager, engine, stock, contact, make_item):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item()], PaymentMethod.ZELLE, ZELLE)
        manager.mark_processing(group)
        assert engine.confirm(group.id, confirmed_by="admin").numbers == ["0001"]

    def test_notification_failure_is_a_warning(self, manager, engine, stock, contact, make_item, notifier):
        stock("M:F", 10)
        notifier.fail_with = ConnectionError("smtp down")
        group = manager.create_group(contact, [make_item()], PaymentMethod.ZELLE, ZELLE)
        result = engine.confirm(group.id, confirmed_by="admin")
        assert result.group.payment_status is PaymentStatus.CONFIRMED
        assert not result.notification_sent
        assert result.warnings
        assert orm.AuditEntry.objects.filter(action="notification_failed", group_id=group.id).exists()


@pytest.mark.django_db
class TestMaterialize:
    """Deferred items are created on confirmation."""

    def test_holds_are_attached_to_new_items(self, manager, engine, stock, contact, make_item):
        stock("M:F", 10)
        stock("L:M", 10)
        group = manager.create_group(
            contact, [make_item("Ana"), make_item("Luis", size="L", gender="M")], PaymentMethod.MOBILE_P2C
        )
        holds = manager.place_holds(group)
        result = engine.confirm(group.id, confirmed_by="gateway")

        assert [i.full_name for i in sorted(result.group.items, key=lambda i: i.position)] == ["Ana", "Luis"]
        assert result.group.work_order is None
        committed = orm.Reservation.objects.filter(group_id=group.id, status=ReservationStatus.COMMITTED.value)
        assert {r.id for r in committed} == {h.id for h in holds}
        assert all(r.item_id for r in committed)
        assert _ledger("M:F") == (0, 1, 9)
        assert _ledger("L:M") == (0, 1, 9)

    def test_items_without_holds_are_reserved_on_the_spot(self, manager, engine, stock, contact, make_item):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item(), make_item("Eva")], PaymentMethod.MOBILE_P2C)
        result = engine.confirm(group.id, confirmed_by="gateway")
        assert len(result.group.items) == 2
        assert result.numbers == ["0001", "0002"]
        assert _ledger() == (0, 2, 8)


@pytest.mark.django_db
class TestReject:
    """Tests for ConfirmationEngine.reject."""

    def test_reject_releases_reservations(self, manager, engine, stock, contact, make_item, notifier):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item(), make_item("Eva")], PaymentMethod.ZELLE, ZELLE)
        rejected = engine.reject(group.id, "Proof unreadable", rejected_by="admin")
        assert rejected.payment_status is PaymentStatus.REJECTED
        assert rejected.rejection_reason == "Proof unreadable"
        assert _ledger() == (0, 0, 10)
        assert notifier.rejections == [(group.code, "Proof unreadable")]

    def test_reject_twice_is_noop(self, manager, engine, stock, contact, make_item, notifier):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item()], PaymentMethod.ZELLE, ZELLE)
        engine.reject(group.id, "first")
        again = engine.reject(group.id, "second")
        assert again.rejection_reason == "first"
        assert len(notifier.rejections) == 1

    def test_reject_confirmed_group_fails(self, manager, engine, stock, contact, make_item):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item()], PaymentMethod.ZELLE, ZELLE)
        engine.confirm(group.id, confirmed_by="admin")
        with pytest.raises(AlreadyProcessedError):
            engine.reject(group.id, "too late")
        assert _ledger() == (0, 1, 9)


@pytest.mark.django_db
class TestScenarios:
    """End-to-end ledger scenarios."""

    def test_confirm_one_group_reject_another(self, manager, engine, stock, contact, make_item):
        stock("M:F", 10)
        first = manager.create_group(
            contact, [make_item("Ana"), make_item("Eva"), make_item("Sol")], PaymentMethod.ZELLE, ZELLE
        )
        assert _ledger() == (3, 0, 7)

        engine.confirm(first.id, confirmed_by="admin")
        assert _ledger() == (0, 3, 7)

        second = manager.create_group(contact, [make_item("Mar"), make_item("Paz")], PaymentMethod.ZELLE, ZELLE)
        assert _ledger() == (2, 3, 5)
        engine.reject(second.id, "No payment received")
        assert _ledger() == (0, 3, 7)


@pytest.mark.django_db
class TestResendNotification:
    def test_resend_for_confirmed_group(self, manager, engine, stock, contact, make_item, notifier):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item()], PaymentMethod.ZELLE, ZELLE)
        engine.confirm(group.id, confirmed_by="admin")
        assert engine.resend_notification(group.id, requested_by="admin")
        assert len(notifier.confirmations) == 2

    def test_resend_for_pending_group_fails(self, manager, engine, stock, contact, make_item):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item()], PaymentMethod.ZELLE, ZELLE)
        with pytest.raises(ValidationError):
            engine.resend_notification(group.id)


@pytest.mark.django_db(transaction=True)
class TestConcurrentConfirm:
    """Two confirmations racing on separate connections."""

    @pytest.fixture(autouse=True)
    def row_locks(self):
        if connection.vendor == "sqlite":
            pytest.skip("needs a database with row-level locking")

    def test_only_one_confirmation_wins(self, manager, engine, stock, contact, make_item):
        stock("M:F", 10)
        group = manager.create_group(contact, [make_item(), make_item("Eva")], PaymentMethod.ZELLE, ZELLE)
        barrier = threading.Barrier(2)
        outcomes = []

        def confirm(actor):
            barrier.wait()
            try:
                outcomes.append(engine.confirm(group.id, confirmed_by=actor).numbers)
            except AlreadyProcessedError as exc:
                outcomes.append(exc.status)
            finally:
                connection.close()

        threads = [threading.Thread(target=confirm, args=(actor,)) for actor in ("admin", "other-admin")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes, key=str) == [["0001", "0002"], "confirmed"]
        assert _ledger() == (0, 2, 8)
        assert orm.SequenceCounter.objects.get().current == 3
