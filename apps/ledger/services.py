import csv
import io
import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import DecimalField, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from apps.common.exceptions import InvalidPaymentError, InvalidStateError
from apps.ledger.models import REVENUE_TRANSACTION_TYPES, Transaction, TransactionType
from apps.stores.services import next_document_number

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["Transaction Number", "Date", "Type", "Customer", "Description", "Payment Method", "Amount"]


def generate_transaction_number(store, today=None):
    today = today or timezone.localdate()
    return next_document_number(store=store, prefix="TXN", period=today.strftime("%Y%m%d"))


def record_transaction(
    *,
    store,
    transaction_type,
    amount,
    payment_method,
    processed_by,
    reference_type="",
    reference_id="",
    customer_name="",
    description="",
    notes="",
):
    amount = Decimal(amount).quantize(Decimal("0.01"))
    entry = Transaction.objects.create(
        store=store,
        transaction_number=generate_transaction_number(store),
        transaction_type=transaction_type,
        amount=amount,
        payment_method=payment_method,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id else "",
        customer_name=customer_name or "",
        description=description,
        notes=notes or "",
        processed_by=processed_by,
    )
    logger.info("transaction %s %s %s store=%s", entry.transaction_number, transaction_type, amount, store.pk)
    return entry


def refunded_total(original):
    refunded = Transaction.objects.filter(
        store_id=original.store_id,
        transaction_type=TransactionType.REFUND,
        reference_type="transaction",
        reference_id=str(original.id),
    ).aggregate(total=Coalesce(Sum("amount"), Decimal("0.00"), output_field=DecimalField(max_digits=12, decimal_places=2)))
    return -refunded["total"]


def refund_transaction(*, original, amount, reason, processed_by):
    amount = Decimal(amount).quantize(Decimal("0.01"))
    if amount <= 0:
        raise InvalidPaymentError("Refund amount must be greater than 0.")
    if original.transaction_type not in REVENUE_TRANSACTION_TYPES or original.amount <= 0:
        raise InvalidPaymentError("Only positive receipts can be refunded.")
    if original.reference_type == "layby":
        raise InvalidStateError("Layby money is refunded by cancelling the layby.")

    with transaction.atomic():
        original = Transaction.objects.select_for_update().select_related("store").get(pk=original.pk)
        available = (original.amount - refunded_total(original)).quantize(Decimal("0.01"))
        if amount > available:
            raise InvalidPaymentError(f"Refund exceeds the refundable amount of {available}.")
        return record_transaction(
            store=original.store,
            transaction_type=TransactionType.REFUND,
            amount=-amount,
            payment_method=original.payment_method,
            processed_by=processed_by,
            reference_type="transaction",
            reference_id=original.id,
            customer_name=original.customer_name,
            description=f"Refund for transaction {original.transaction_number}: {reason}".strip(),
            notes=reason,
        )


def _humanize(value):
    return (value or "").replace("_", " ")


def transactions_to_csv(transactions):
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for entry in transactions:
        writer.writerow(
            [
                entry.transaction_number,
                timezone.localtime(entry.created_at).date().isoformat(),
                _humanize(entry.transaction_type),
                entry.customer_name or "N/A",
                entry.description or "",
                _humanize(entry.payment_method),
                f"{entry.amount:.2f}",
            ]
        )
    return buffer.getvalue()


def revenue_summary(queryset, today=None):
    today = today or timezone.localdate()
    zero = Decimal("0.00")
    today_revenue = queryset.filter(
        created_at__date=today,
        transaction_type__in=REVENUE_TRANSACTION_TYPES,
    ).aggregate(total=Coalesce(Sum("amount"), zero, output_field=DecimalField(max_digits=16, decimal_places=2)))["total"]
    by_type = {
        row["transaction_type"]: row["total"]
        for row in queryset.values("transaction_type").annotate(
            total=Coalesce(Sum("amount"), zero, output_field=DecimalField(max_digits=16, decimal_places=2))
        ).order_by()
    }
    return {
        "today_revenue": today_revenue,
        "total_transactions": queryset.count(),
        "totals_by_type": by_type,
    }
