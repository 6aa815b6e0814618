from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APITestCase

from apps.common.exceptions import InvalidPaymentError
from apps.ledger.models import ImmutableTransactionError, Transaction, TransactionType
from apps.ledger.services import (
    CSV_COLUMNS,
    record_transaction,
    refund_transaction,
    revenue_summary,
    transactions_to_csv,
)
from apps.stores.models import Store, StoreMember, StoreRole

User = get_user_model()


class TransactionServiceTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(username="owner_txn", password="owner12345")
        self.store = Store.objects.create(name="Main Street", code="MAIN", owner=self.owner)
        self.other_store = Store.objects.create(name="Harbour", code="HARB", owner=self.owner)

    def record(self, store=None, transaction_type=TransactionType.SALE, amount="10.00", **extra):
        return record_transaction(
            store=store or self.store,
            transaction_type=transaction_type,
            amount=Decimal(amount),
            payment_method=extra.pop("payment_method", "cash"),
            processed_by=self.owner,
            **extra,
        )

    def test_transaction_numbers_are_sequential_per_store_and_day(self):
        stamp = timezone.localdate().strftime("%Y%m%d")
        first = self.record()
        second = self.record()
        elsewhere = self.record(store=self.other_store)
        self.assertEqual(first.transaction_number, f"TXN-{stamp}-0001")
        self.assertEqual(second.transaction_number, f"TXN-{stamp}-0002")
        self.assertEqual(elsewhere.transaction_number, f"TXN-{stamp}-0001")

    def test_transactions_cannot_be_modified_or_deleted(self):
        entry = self.record()
        entry.amount = Decimal("99.00")
        with self.assertRaises(ImmutableTransactionError):
            entry.save()
        with self.assertRaises(ImmutableTransactionError):
            entry.delete()
        self.assertEqual(Transaction.objects.get(pk=entry.pk).amount, Decimal("10.00"))

    def test_csv_export_formats_rows(self):
        entry = self.record(
            transaction_type=TransactionType.LAYBY_PAYMENT,
            amount="12.5",
            payment_method="bank_transfer",
            description="Payment for layby LAY-2026-0001",
        )
        lines = transactions_to_csv([entry]).splitlines()
        self.assertEqual(lines[0], ",".join(CSV_COLUMNS))
        self.assertEqual(
            lines[1],
            f"{entry.transaction_number},{timezone.localdate().isoformat()},layby payment,N/A,"
            "Payment for layby LAY-2026-0001,bank transfer,12.50",
        )

    def test_revenue_summary_counts_receipts_only(self):
        self.record(amount="50.00")
        self.record(transaction_type=TransactionType.LAYBY_DEPOSIT, amount="20.00")
        self.record(transaction_type=TransactionType.LAYBY_INTEREST, amount="0.26")
        self.record(transaction_type=TransactionType.REFUND, amount="-5.00")
        summary = revenue_summary(Transaction.objects.filter(store=self.store))
        self.assertEqual(summary["today_revenue"], Decimal("70.00"))
        self.assertEqual(summary["total_transactions"], 4)
        self.assertEqual(summary["totals_by_type"]["refund"], Decimal("-5.00"))

    def test_refund_locks_the_original_before_checking_the_refundable_amount(self):
        sale = self.record(amount="40.00")
        refund_transaction(original=sale, amount=Decimal("30.00"), reason="First", processed_by=self.owner)
        with patch.object(
            Transaction.objects, "select_for_update", wraps=Transaction.objects.select_for_update
        ) as locking:
            with self.assertRaises(InvalidPaymentError):
                refund_transaction(original=sale, amount=Decimal("20.00"), reason="Second", processed_by=self.owner)
        locking.assert_called_once_with()
        self.assertEqual(Transaction.objects.filter(transaction_type=TransactionType.REFUND).count(), 1)


class TransactionApiTests(APITestCase):
    def setUp(self):
        self.owner = User.objects.create_user(username="owner_txn", password="owner12345")
        self.cashier = User.objects.create_user(username="cashier_txn", password="cashier12345")
        self.store = Store.objects.create(name="Main Street", code="MAIN", owner=self.owner)
        StoreMember.objects.create(store=self.store, user=self.cashier, role=StoreRole.CASHIER)
        self.base = f"/api/v1/stores/{self.store.id}/transactions"
        self.sale = record_transaction(
            store=self.store,
            transaction_type=TransactionType.SALE,
            amount=Decimal("50.00"),
            payment_method="card",
            processed_by=self.owner,
            customer_name="Jane Doe",
            description="Counter sale",
        )

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_list_filters_by_type_and_search(self):
        record_transaction(
            store=self.store,
            transaction_type=TransactionType.LAYBY_DEPOSIT,
            amount=Decimal("20.00"),
            payment_method="cash",
            processed_by=self.owner,
            customer_name="Bob Smith",
        )
        self.auth_as("cashier_txn", "cashier12345")
        by_type = self.client.get(f"{self.base}/", {"transaction_type": "layby_deposit"})
        self.assertEqual(by_type.status_code, 200)
        self.assertEqual(by_type.data["count"], 1)
        by_customer = self.client.get(f"{self.base}/", {"q": "jane"})
        self.assertEqual(by_customer.data["results"][0]["id"], str(self.sale.id))

    def test_refund_cannot_exceed_original_amount(self):
        self.auth_as("owner_txn", "owner12345")
        url = f"{self.base}/{self.sale.id}/refund/"
        first = self.client.post(url, {"amount": "30.00", "reason": "Damaged box"}, format="json")
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.data["amount"], "-30.00")
        self.assertEqual(first.data["transaction_type"], "refund")

        second = self.client.post(url, {"amount": "25.00", "reason": "Again"}, format="json")
        self.assertEqual(second.status_code, 400)
        self.assertEqual(second.data["code"], "invalid_payment")
        self.assertEqual(Transaction.objects.filter(transaction_type=TransactionType.REFUND).count(), 1)

    def test_cashier_cannot_refund_or_export(self):
        self.auth_as("cashier_txn", "cashier12345")
        refund = self.client.post(f"{self.base}/{self.sale.id}/refund/", {"amount": "5.00", "reason": "x"}, format="json")
        self.assertEqual(refund.status_code, 403)
        export = self.client.get(f"{self.base}/export/")
        self.assertEqual(export.status_code, 403)

    def test_export_returns_csv_attachment(self):
        self.auth_as("owner_txn", "owner12345")
        response = self.client.get(f"{self.base}/export/")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response["Content-Type"].startswith("text/csv"))
        self.assertIn(f"transactions_{timezone.localdate().isoformat()}.csv", response["Content-Disposition"])
        body = response.content.decode()
        self.assertTrue(body.startswith("Transaction Number,Date,Type,Customer,Description,Payment Method,Amount"))
        self.assertIn("Jane Doe,Counter sale,card,50.00", body)

    def test_export_of_empty_selection_is_rejected(self):
        self.auth_as("owner_txn", "owner12345")
        response = self.client.get(f"{self.base}/export/", {"transaction_type": "refund"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_state")

    def test_summary_reports_today_revenue(self):
        self.auth_as("cashier_txn", "cashier12345")
        response = self.client.get(f"{self.base}/summary/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["today_revenue"], Decimal("50.00"))
        self.assertEqual(response.data["total_transactions"], 1)

    def test_layby_receipts_cannot_be_refunded_directly(self):
        deposit = record_transaction(
            store=self.store,
            transaction_type=TransactionType.LAYBY_DEPOSIT,
            amount=Decimal("20.00"),
            payment_method="cash",
            processed_by=self.owner,
            reference_type="layby",
            reference_id="00000000-0000-0000-0000-000000000001",
        )
        self.auth_as("owner_txn", "owner12345")
        response = self.client.post(f"{self.base}/{deposit.id}/refund/", {"amount": "20.00", "reason": "x"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid_state")
        self.assertFalse(Transaction.objects.filter(transaction_type=TransactionType.REFUND).exists())
