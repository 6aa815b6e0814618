from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db.models import F
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APITestCase

from apps.catalog.models import Product
from apps.common.exceptions import ConcurrentUpdateError, InvalidStateError
from apps.layby.models import (
    HistoryAction,
    LaybyHistory,
    LaybyNotification,
    LaybyOrder,
    LaybyPayment,
    LaybyPaymentSchedule,
    LaybySettings,
    LaybyStatus,
    NotificationType,
    ScheduleStatus,
    ScheduleType,
)
from apps.layby.services import (
    apply_interest,
    apply_payment,
    build_payment_schedule,
    calculate_layby_interest,
    cancel_layby,
    complete_layby,
    compute_layby_stats,
    create_layby,
    initialize_layby_settings,
    overdue_interest_candidates,
    record_manual_notification,
    selected_interest_total,
    update_overdue_laybys,
)
from apps.ledger.models import Transaction, TransactionType
from apps.ledger.services import refund_transaction
from apps.stores.models import Store, StoreMember, StoreRole

User = get_user_model()


class LaybyFixtureMixin:
    def make_store(self):
        self.owner = User.objects.create_user(username="owner_lay", password="owner12345")
        self.manager = User.objects.create_user(username="manager_lay", password="manager12345")
        self.cashier = User.objects.create_user(username="cashier_lay", password="cashier12345")
        self.outsider = User.objects.create_user(username="outsider_lay", password="outsider12345")
        self.store = Store.objects.create(name="Main Street", code="MAIN", owner=self.owner)
        self.settings = initialize_layby_settings(self.store)
        StoreMember.objects.create(store=self.store, user=self.manager, role=StoreRole.MANAGER)
        StoreMember.objects.create(store=self.store, user=self.cashier, role=StoreRole.CASHIER)
        self.product = Product.objects.create(store=self.store, sku="TV-55", name="55in TV", price=Decimal("100.00"))

    def make_order(self, deposit="20.00", **extra):
        params = {
            "store": self.store,
            "user": self.cashier,
            "customer": {"name": "Jane Doe", "phone": "555-0101", "email": "jane@example.com"},
            "items": [{"product": self.product, "quantity": 1, "unit_price": Decimal("100.00")}],
            "deposit_amount": Decimal(deposit),
        }
        params.update(extra)
        return create_layby(**params)

    def make_overdue(self, order, days):
        LaybyOrder.objects.filter(pk=order.pk).update(
            status=LaybyStatus.OVERDUE,
            due_date=timezone.localdate() - timedelta(days=days),
            version=F("version") + 1,
        )
        order.refresh_from_db()
        return order


class LaybyApiTests(LaybyFixtureMixin, APITestCase):
    def setUp(self):
        self.make_store()
        self.base = f"/api/v1/stores/{self.store.id}"

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def create_layby(self, deposit="20.00", **extra):
        payload = {
            "customer": {"name": "Jane Doe", "phone": "555-0101", "email": "jane@example.com"},
            "items": [{"product": str(self.product.id), "quantity": 1, "unit_price": "100.00"}],
            "deposit_amount": deposit,
            "deposit_payment_method": "cash",
        }
        payload.update(extra)
        return self.client.post(f"{self.base}/layby-orders/", payload, format="json")

    def test_layby_lifecycle_from_deposit_to_completion(self):
        self.auth_as("cashier_lay", "cashier12345")
        response = self.create_layby()
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["balance_remaining"], "80.00")
        self.assertEqual(response.data["status"], "active")
        self.assertTrue(response.data["layby_number"].startswith(f"LAY-{timezone.localdate().year}-"))
        order_id = response.data["id"]

        first = self.client.post(f"{self.base}/layby-orders/{order_id}/payments/", {"amount": "50.00"}, format="json")
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.data["balance_remaining"], "30.00")
        self.assertFalse(first.data["can_complete"])

        second = self.client.post(f"{self.base}/layby-orders/{order_id}/payments/", {"amount": "30.00"}, format="json")
        self.assertEqual(second.status_code, 201)
        self.assertEqual(second.data["balance_remaining"], "0.00")
        self.assertTrue(second.data["can_complete"])
        self.assertEqual(second.data["status"], "active")
        self.assertEqual(second.data["amount_paid"], "100.00")

        self.auth_as("manager_lay", "manager12345")
        complete = self.client.post(f"{self.base}/layby-orders/{order_id}/complete/", {}, format="json")
        self.assertEqual(complete.status_code, 200)
        self.assertEqual(complete.data["status"], "completed")
        self.assertIsNotNone(complete.data["completion_date"])

        types = list(
            Transaction.objects.filter(reference_id=order_id).order_by("created_at").values_list("transaction_type", flat=True)
        )
        self.assertEqual(types.count(TransactionType.LAYBY_DEPOSIT), 1)
        self.assertEqual(types.count(TransactionType.LAYBY_PAYMENT), 2)
        actions = set(LaybyHistory.objects.filter(order_id=order_id).values_list("action_type", flat=True))
        self.assertTrue({"created", "payment_made", "completed"} <= actions)
        self.assertTrue(
            LaybyNotification.objects.filter(order_id=order_id, notification_type="completion_notice").exists()
        )

    def test_deposit_must_be_less_than_total(self):
        self.auth_as("cashier_lay", "cashier12345")
        response = self.create_layby(deposit="100.00")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_payment")
        self.assertFalse(LaybyOrder.objects.exists())

    def test_deposit_below_required_percent_is_rejected(self):
        self.auth_as("cashier_lay", "cashier12345")
        response = self.create_layby(deposit="10.00")
        self.assertEqual(response.status_code, 400)
        self.assertIn("at least 20.00", response.data["detail"])

    def test_due_date_beyond_max_duration_is_rejected(self):
        self.auth_as("cashier_lay", "cashier12345")
        due = (timezone.localdate() + timedelta(days=120)).isoformat()
        response = self.create_layby(due_date=due)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_state")

    def test_product_from_another_store_is_rejected(self):
        other_store = Store.objects.create(name="Other", code="OTHER", owner=self.owner)
        foreign = Product.objects.create(store=other_store, sku="TV-55", name="55in TV", price=Decimal("100.00"))
        self.auth_as("cashier_lay", "cashier12345")
        response = self.create_layby(items=[{"product": str(foreign.id), "quantity": 1}])
        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.data["fields"])

    def test_overpayment_and_zero_payment_are_rejected(self):
        self.auth_as("cashier_lay", "cashier12345")
        order_id = self.create_layby().data["id"]

        over = self.client.post(f"{self.base}/layby-orders/{order_id}/payments/", {"amount": "80.01"}, format="json")
        self.assertEqual(over.status_code, 400)
        self.assertEqual(over.data["code"], "invalid_payment")

        zero = self.client.post(f"{self.base}/layby-orders/{order_id}/payments/", {"amount": "0"}, format="json")
        self.assertEqual(zero.status_code, 400)
        self.assertEqual(zero.data["code"], "invalid_payment")

        order = LaybyOrder.objects.get(pk=order_id)
        self.assertEqual(order.balance_remaining, Decimal("80.00"))
        self.assertFalse(order.payments.exists())
        self.assertFalse(Transaction.objects.filter(transaction_type=TransactionType.LAYBY_PAYMENT).exists())

    def test_stale_version_returns_conflict(self):
        self.auth_as("cashier_lay", "cashier12345")
        created = self.create_layby().data
        url = f"{self.base}/layby-orders/{created['id']}/payments/"

        ok = self.client.post(url, {"amount": "10.00", "version": created["version"]}, format="json")
        self.assertEqual(ok.status_code, 201)
        self.assertEqual(ok.data["version"], created["version"] + 1)

        stale = self.client.post(url, {"amount": "10.00", "version": created["version"]}, format="json")
        self.assertEqual(stale.status_code, 409)
        self.assertEqual(stale.data["code"], "conflict")
        self.assertEqual(LaybyOrder.objects.get(pk=created["id"]).balance_remaining, Decimal("70.00"))

    def test_complete_with_outstanding_balance_is_rejected(self):
        self.auth_as("manager_lay", "manager12345")
        order_id = self.create_layby().data["id"]
        response = self.client.post(f"{self.base}/layby-orders/{order_id}/complete/", {}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_state")
        self.assertEqual(LaybyOrder.objects.get(pk=order_id).status, LaybyStatus.ACTIVE)

    def test_cancel_applies_fee_and_records_refund(self):
        LaybySettings.objects.filter(store=self.store).update(default_cancellation_fee_percent=Decimal("10.00"))
        self.auth_as("manager_lay", "manager12345")
        order_id = self.create_layby().data["id"]
        self.client.post(f"{self.base}/layby-orders/{order_id}/payments/", {"amount": "30.00"}, format="json")

        response = self.client.post(
            f"{self.base}/layby-orders/{order_id}/cancel/",
            {"reason": "Customer changed mind"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "cancelled")
        self.assertEqual(response.data["restocking_fee"], "5.00")
        self.assertEqual(response.data["refund_amount"], "45.00")
        self.assertFalse(response.data["inventory_reserved"])

        refund = Transaction.objects.get(transaction_type=TransactionType.REFUND, reference_id=order_id)
        self.assertEqual(refund.amount, Decimal("-45.00"))

        payment = self.client.post(f"{self.base}/layby-orders/{order_id}/payments/", {"amount": "5.00"}, format="json")
        self.assertEqual(payment.status_code, 400)
        self.assertEqual(payment.data["code"], "invalid_state")

    def test_cashier_cannot_cancel_or_apply_interest(self):
        self.auth_as("cashier_lay", "cashier12345")
        order_id = self.create_layby().data["id"]

        cancel = self.client.post(f"{self.base}/layby-orders/{order_id}/cancel/", {}, format="json")
        self.assertEqual(cancel.status_code, 403)
        interest = self.client.post(
            f"{self.base}/layby-orders/apply-interest/", {"order_ids": [order_id]}, format="json"
        )
        self.assertEqual(interest.status_code, 403)

    def test_outsider_cannot_see_store_laybys(self):
        self.auth_as("outsider_lay", "outsider12345")
        response = self.client.get(f"{self.base}/layby-orders/")
        self.assertEqual(response.status_code, 403)

    def test_list_filters_by_status_and_search(self):
        self.auth_as("cashier_lay", "cashier12345")
        first = self.create_layby().data
        self.create_layby(customer={"name": "Bob Smith", "phone": "555-0202"})

        by_name = self.client.get(f"{self.base}/layby-orders/", {"q": "bob"})
        self.assertEqual(by_name.status_code, 200)
        self.assertEqual(by_name.data["count"], 1)

        by_number = self.client.get(f"{self.base}/layby-orders/", {"q": first["layby_number"]})
        self.assertEqual(by_number.data["results"][0]["id"], first["id"])

        completed = self.client.get(f"{self.base}/layby-orders/", {"status": "completed"})
        self.assertEqual(completed.data["count"], 0)

    def test_stats_endpoint_classifies_orders(self):
        self.auth_as("cashier_lay", "cashier12345")
        self.create_layby()
        self.create_layby(deposit="30.00")
        response = self.client.get(f"{self.base}/layby-orders/stats/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["total"], 2)
        self.assertEqual(response.data["active"], 2)
        self.assertEqual(response.data["outstanding_balance"], Decimal("150.00"))
        self.assertEqual(response.data["deposits_collected"], Decimal("50.00"))

    def test_apply_interest_endpoint_reports_each_order(self):
        order = self.make_overdue(
            self.make_order(interest_rate=Decimal("0.1200"), user=self.manager),
            days=10,
        )
        self.auth_as("manager_lay", "manager12345")

        preview = self.client.get(f"{self.base}/layby-orders/overdue-interest/", {"selected": [str(order.id)]})
        self.assertEqual(preview.status_code, 200)
        self.assertEqual(preview.data["results"][0]["calculated_interest"], Decimal("0.26"))
        self.assertEqual(preview.data["selected_total"], Decimal("0.26"))

        missing = "00000000-0000-0000-0000-000000000000"
        response = self.client.post(
            f"{self.base}/layby-orders/apply-interest/",
            {"order_ids": [str(order.id), missing]},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        statuses = {row["order_id"]: row["status"] for row in response.data["results"]}
        self.assertEqual(statuses[str(order.id)], "applied")
        self.assertEqual(statuses[missing], "not_found")

    def test_settings_defaults_and_upsert(self):
        LaybySettings.objects.filter(store=self.store).delete()
        self.auth_as("manager_lay", "manager12345")

        defaults = self.client.get(f"{self.base}/layby-settings/")
        self.assertEqual(defaults.status_code, 200)
        self.assertFalse(defaults.data["configured"])
        self.assertEqual(defaults.data["require_deposit_percent"], "20.00")
        self.assertEqual(defaults.data["max_layby_duration_days"], 90)

        saved = self.client.put(
            f"{self.base}/layby-settings/",
            {"require_deposit_percent": "25.00", "max_reminder_count": 5},
            format="json",
        )
        self.assertEqual(saved.status_code, 200)
        self.assertTrue(saved.data["configured"])
        settings = LaybySettings.objects.get(store=self.store)
        self.assertEqual(settings.require_deposit_percent, Decimal("25.00"))
        self.assertEqual(settings.max_reminder_count, 5)
        self.assertEqual(settings.overdue_grace_period_days, 7)

    def test_settings_out_of_range_and_cashier_update_are_rejected(self):
        self.auth_as("manager_lay", "manager12345")
        response = self.client.put(
            f"{self.base}/layby-settings/",
            {"require_deposit_percent": "150", "max_layby_duration_days": 0},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("require_deposit_percent", response.data["fields"])
        self.assertIn("max_layby_duration_days", response.data["fields"])

        self.auth_as("cashier_lay", "cashier12345")
        forbidden = self.client.put(f"{self.base}/layby-settings/", {"max_reminder_count": 2}, format="json")
        self.assertEqual(forbidden.status_code, 403)

    def test_reminders_stop_at_max_reminder_count(self):
        LaybySettings.objects.filter(store=self.store).update(max_reminder_count=2)
        self.auth_as("cashier_lay", "cashier12345")
        order_id = self.create_layby().data["id"]

        for _ in range(2):
            sent = self.client.post(f"{self.base}/layby-orders/reminders/", {"order_ids": [order_id]}, format="json")
            self.assertEqual(sent.data["results"][0]["status"], "sent")
        third = self.client.post(f"{self.base}/layby-orders/reminders/", {"order_ids": [order_id]}, format="json")
        self.assertEqual(third.status_code, 200)
        self.assertEqual(third.data["results"][0]["status"], "skipped")

        order = LaybyOrder.objects.get(pk=order_id)
        self.assertEqual(order.reminder_count, 2)
        self.assertIsNotNone(order.last_reminder_sent)
        notifications = LaybyNotification.objects.filter(order=order, notification_type="payment_reminder")
        self.assertEqual(notifications.count(), 2)
        self.assertEqual(notifications.first().subject, f"Payment Reminder - Layby {order.layby_number}")
        self.assertIn("Balance remaining: $80.00", notifications.first().message)

    def test_manual_notification_is_queued(self):
        self.auth_as("cashier_lay", "cashier12345")
        order_id = self.create_layby().data["id"]
        response = self.client.post(
            f"{self.base}/layby-orders/{order_id}/notifications/",
            {"notification_type": "overdue_notice"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], "pending")
        self.assertTrue(response.data["subject"].startswith("Overdue Notice - Layby"))

        listed = self.client.get(f"{self.base}/layby-orders/{order_id}/notifications/")
        self.assertEqual(len(listed.data), 1)

    def test_bulk_priority_update_writes_history(self):
        self.auth_as("manager_lay", "manager12345")
        first = self.create_layby().data["id"]
        second = self.create_layby().data["id"]
        response = self.client.post(
            f"{self.base}/layby-orders/bulk/",
            {"action": "update_priority", "order_ids": [first, second], "priority_level": "urgent"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["updated"], 2)
        self.assertEqual(LaybyOrder.objects.filter(priority_level="urgent").count(), 2)
        self.assertEqual(
            LaybyHistory.objects.filter(action_description="Priority changed to urgent").count(),
            2,
        )

    def test_history_and_calendar_endpoints(self):
        self.auth_as("cashier_lay", "cashier12345")
        order_id = self.create_layby(payment_schedule_type="weekly").data["id"]

        history = self.client.get(f"{self.base}/layby-orders/{order_id}/history/")
        self.assertEqual(history.status_code, 200)
        self.assertEqual(history.data[0]["action_type"], "created")

        today = timezone.localdate()
        calendar = self.client.get(
            f"{self.base}/layby-orders/calendar/",
            {"date_from": today.isoformat(), "date_to": (today + timedelta(days=30)).isoformat()},
        )
        self.assertEqual(calendar.status_code, 200)
        kinds = [event["kind"] for event in calendar.data["events"]]
        self.assertEqual(kinds.count("installment"), 4)

    def test_report_requires_manager(self):
        self.auth_as("cashier_lay", "cashier12345")
        self.create_layby()
        forbidden = self.client.get(f"{self.base}/layby-reports/")
        self.assertEqual(forbidden.status_code, 403)

        self.auth_as("manager_lay", "manager12345")
        response = self.client.get(f"{self.base}/layby-reports/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["summary"]["total_orders"], 1)
        self.assertEqual(response.data["summary"]["completion_rate"], Decimal("0.00"))
        self.assertEqual(len(response.data["monthly_trend"]), 12)
        active = next(row for row in response.data["status_breakdown"] if row["status"] == "active")
        self.assertEqual(active["percentage"], Decimal("100.00"))

    def test_customer_upsert_by_phone(self):
        self.auth_as("cashier_lay", "cashier12345")
        first = self.client.post(f"{self.base}/customers/", {"name": "Ana", "phone": "(555) 0303"}, format="json")
        second = self.client.post(f"{self.base}/customers/", {"name": "Ana Maria", "phone": "5550303"}, format="json")
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.data["id"], second.data["id"])
        self.assertEqual(second.data["name"], "Ana Maria")


class LaybyServiceTests(LaybyFixtureMixin, TestCase):
    def setUp(self):
        self.make_store()

    def test_weekly_schedule_splits_remaining_evenly(self):
        start = timezone.localdate()
        rows = build_payment_schedule(Decimal("80.00"), ScheduleType.WEEKLY, start)
        self.assertEqual([row[2] for row in rows], [Decimal("20.00")] * 4)
        self.assertEqual([row[1] for row in rows], [start + timedelta(days=7 * n) for n in range(1, 5)])

    def test_monthly_schedule_last_installment_absorbs_rounding(self):
        rows = build_payment_schedule(Decimal("100.00"), ScheduleType.MONTHLY, timezone.localdate())
        self.assertEqual([row[2] for row in rows], [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")])
        self.assertEqual(build_payment_schedule(Decimal("100.00"), ScheduleType.CUSTOM, timezone.localdate()), [])

    def test_payment_spills_over_schedule_installments(self):
        order = self.make_order(payment_schedule_type=ScheduleType.WEEKLY)
        apply_payment(order=order, user=self.cashier, amount=Decimal("30.00"))
        first, second = LaybyPaymentSchedule.objects.filter(order=order).order_by("payment_number")[:2]
        self.assertEqual(first.status, ScheduleStatus.PAID)
        self.assertEqual(second.amount_paid, Decimal("10.00"))
        self.assertEqual(second.status, ScheduleStatus.PENDING)

    def test_interest_for_fifty_at_twelve_percent_over_ten_days(self):
        today = timezone.localdate()
        order = LaybyOrder(
            balance_remaining=Decimal("50.00"),
            interest_rate=Decimal("0.1200"),
            due_date=today - timedelta(days=10),
        )
        self.assertEqual(calculate_layby_interest(order, today), Decimal("0.16"))
        order.due_date = today
        self.assertEqual(calculate_layby_interest(order, today), Decimal("0.00"))

    def test_applying_interest_twice_charges_twice(self):
        order = self.make_overdue(self.make_order(interest_rate=Decimal("0.1200")), days=10)
        candidates = overdue_interest_candidates(self.store)
        self.assertEqual(selected_interest_total(candidates, [order.id]), Decimal("0.26"))

        apply_interest(store=self.store, user=self.manager, order_ids=[order.id])
        apply_interest(store=self.store, user=self.manager, order_ids=[order.id])

        order.refresh_from_db()
        self.assertEqual(order.interest_amount, Decimal("0.52"))
        self.assertEqual(order.balance_remaining, Decimal("80.52"))
        charges = Transaction.objects.filter(transaction_type=TransactionType.LAYBY_INTEREST, reference_id=str(order.id))
        self.assertEqual(charges.count(), 2)
        self.assertEqual(charges.first().payment_method, "interest_charge")
        entry = LaybyHistory.objects.filter(order=order, action_type=HistoryAction.INTEREST_APPLIED).first()
        self.assertEqual(entry.action_description, "Interest applied: $0.26 for 10 days overdue")

    def test_interest_skips_active_orders(self):
        order = self.make_order(interest_rate=Decimal("0.1200"))
        results = apply_interest(store=self.store, user=self.manager, order_ids=[order.id])
        self.assertEqual(results[0]["status"], "skipped")
        order.refresh_from_db()
        self.assertEqual(order.interest_amount, Decimal("0.00"))

    def test_stale_order_instance_raises_conflict(self):
        order = self.make_order()
        LaybyOrder.objects.filter(pk=order.pk).update(version=F("version") + 1)
        with self.assertRaises(ConcurrentUpdateError):
            apply_payment(order=order, user=self.cashier, amount=Decimal("10.00"), expected_version=order.version)
        order.refresh_from_db()
        self.assertEqual(order.balance_remaining, Decimal("80.00"))

    def test_overdue_sweep_marks_orders_and_installments(self):
        late = self.make_order()
        on_time = self.make_order(payment_schedule_type=ScheduleType.WEEKLY)
        LaybyOrder.objects.filter(pk=late.pk).update(due_date=timezone.localdate() - timedelta(days=1))

        result = update_overdue_laybys(as_of=timezone.localdate() + timedelta(days=8))

        self.assertEqual(result["orders_updated"], 1)
        self.assertEqual(result["schedules_updated"], 1)
        late.refresh_from_db()
        on_time.refresh_from_db()
        self.assertEqual(late.status, LaybyStatus.OVERDUE)
        self.assertEqual(late.version, 2)
        self.assertEqual(on_time.status, LaybyStatus.ACTIVE)
        entry = LaybyHistory.objects.get(order=late, action_type=HistoryAction.STATUS_CHANGED)
        self.assertIsNone(entry.performed_by)

    def test_overdue_sweep_command(self):
        order = self.make_order()
        LaybyOrder.objects.filter(pk=order.pk).update(due_date=timezone.localdate() - timedelta(days=3))
        call_command("update_overdue_laybys", "--store", "main")
        order.refresh_from_db()
        self.assertEqual(order.status, LaybyStatus.OVERDUE)

    def test_reminder_command_respects_frequency(self):
        order = self.make_order()
        call_command("send_layby_reminders")
        call_command("send_layby_reminders")
        order.refresh_from_db()
        self.assertEqual(order.reminder_count, 1)
        self.assertIsNone(LaybyNotification.objects.get(order=order).created_by)

    def test_stats_on_empty_and_mixed_lists(self):
        empty = compute_layby_stats([])
        self.assertEqual(empty["total"], 0)
        self.assertEqual(empty["total_value"], Decimal("0.00"))
        self.assertEqual(empty["outstanding_balance"], Decimal("0.00"))

        orders = [
            LaybyOrder(status=LaybyStatus.ACTIVE, total_amount=Decimal("100.00"), deposit_amount=Decimal("20.00"), balance_remaining=Decimal("80.00")),
            LaybyOrder(status=LaybyStatus.OVERDUE, total_amount=Decimal("50.00"), deposit_amount=Decimal("10.00"), balance_remaining=Decimal("40.00")),
            LaybyOrder(status=LaybyStatus.COMPLETED, total_amount=Decimal("30.00"), deposit_amount=Decimal("5.00"), balance_remaining=Decimal("0.00")),
            LaybyOrder(status=LaybyStatus.CANCELLED, total_amount=Decimal("20.00"), deposit_amount=Decimal("5.00"), balance_remaining=Decimal("15.00")),
        ]
        stats = compute_layby_stats(orders)
        self.assertEqual(stats["total"], 4)
        self.assertEqual(stats["active"], 1)
        self.assertEqual(stats["overdue"], 1)
        self.assertEqual(stats["completed"], 1)
        self.assertEqual(stats["cancelled"], 1)
        self.assertEqual(stats["total_value"], Decimal("200.00"))
        self.assertEqual(stats["outstanding_balance"], Decimal("120.00"))
        self.assertEqual(stats["deposits_collected"], Decimal("40.00"))

    def test_layby_numbers_are_sequential_per_store(self):
        first = self.make_order()
        second = self.make_order()
        year = timezone.localdate().year
        self.assertEqual(first.layby_number, f"LAY-{year}-0001")
        self.assertEqual(second.layby_number, f"LAY-{year}-0002")

    def test_failed_ledger_write_rolls_back_payment(self):
        order = self.make_order()
        history_before = LaybyHistory.objects.filter(order=order).count()
        with patch("apps.layby.services.record_transaction", side_effect=RuntimeError("ledger unavailable")):
            with self.assertRaises(RuntimeError):
                apply_payment(order=order, user=self.cashier, amount=Decimal("10.00"))

        order.refresh_from_db()
        self.assertEqual(order.balance_remaining, Decimal("80.00"))
        self.assertEqual(order.version, 1)
        self.assertFalse(LaybyPayment.objects.filter(order=order).exists())
        self.assertEqual(LaybyHistory.objects.filter(order=order).count(), history_before)
        self.assertEqual(LaybyPaymentSchedule.objects.filter(order=order, amount_paid__gt=0).count(), 0)

    def test_failed_ledger_write_rolls_back_creation(self):
        with patch("apps.layby.services.record_transaction", side_effect=RuntimeError("ledger unavailable")):
            with self.assertRaises(RuntimeError):
                self.make_order()
        self.assertFalse(LaybyOrder.objects.filter(store=self.store).exists())
        self.assertFalse(LaybyHistory.objects.exists())

    def test_manual_reminders_stop_at_max_reminder_count(self):
        LaybySettings.objects.filter(store=self.store).update(max_reminder_count=2)
        order = self.make_order()
        for _ in range(2):
            record_manual_notification(order=order, user=self.cashier, notification_type=NotificationType.PAYMENT_REMINDER)
        with self.assertRaises(InvalidStateError):
            record_manual_notification(order=order, user=self.cashier, notification_type=NotificationType.PAYMENT_REMINDER)

        order.refresh_from_db()
        self.assertEqual(order.reminder_count, 2)
        self.assertEqual(
            LaybyNotification.objects.filter(order=order, notification_type=NotificationType.PAYMENT_REMINDER).count(),
            2,
        )

    def test_manual_reminder_on_completed_layby_is_rejected(self):
        order = self.make_order()
        apply_payment(order=order, user=self.cashier, amount=Decimal("80.00"))
        complete_layby(order=order, user=self.manager)

        with self.assertRaises(InvalidStateError):
            record_manual_notification(order=order, user=self.cashier, notification_type=NotificationType.PAYMENT_REMINDER)
        order.refresh_from_db()
        self.assertEqual(order.reminder_count, 0)
        self.assertFalse(LaybyNotification.objects.filter(notification_type=NotificationType.PAYMENT_REMINDER).exists())

    def test_layby_receipts_are_refunded_only_by_cancelling(self):
        order = self.make_order()
        deposit = Transaction.objects.get(transaction_type=TransactionType.LAYBY_DEPOSIT, reference_id=str(order.id))
        with self.assertRaises(InvalidStateError):
            refund_transaction(original=deposit, amount=Decimal("20.00"), reason="Changed mind", processed_by=self.manager)

        cancel_layby(order=order, user=self.manager, fee_percent=Decimal("0"))
        refunds = Transaction.objects.filter(store=self.store, transaction_type=TransactionType.REFUND)
        self.assertEqual(refunds.count(), 1)
        self.assertEqual(refunds.get().amount, Decimal("-20.00"))

    def test_reminder_command_covers_stores_without_settings(self):
        order = self.make_order()
        LaybySettings.objects.filter(store=self.store).delete()
        call_command("send_layby_reminders")
        order.refresh_from_db()
        self.assertEqual(order.reminder_count, 1)
