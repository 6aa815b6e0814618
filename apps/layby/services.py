import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.common.exceptions import ConcurrentUpdateError, InvalidPaymentError, InvalidStateError, LedgerError
from apps.layby.models import (
    OPEN_STATUSES,
    Customer,
    HistoryAction,
    LaybyHistory,
    LaybyItem,
    LaybyOrder,
    LaybyPayment,
    LaybyPaymentMethod,
    LaybyPaymentSchedule,
    LaybySettings,
    LaybyStatus,
    NotificationType,
    PriorityLevel,
    ScheduleStatus,
    ScheduleType,
)
from apps.layby.notifications import has_contact_details, queue_notification
from apps.ledger.models import TransactionType
from apps.ledger.services import record_transaction
from apps.stores.services import next_document_number

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# (days between installments, number of installments)
SCHEDULE_PLANS = {
    ScheduleType.WEEKLY: (7, 4),
    ScheduleType.BI_WEEKLY: (14, 4),
    ScheduleType.MONTHLY: (30, 3),
}


def _money(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def initialize_layby_settings(store):
    settings, created = LaybySettings.objects.get_or_create(store=store)
    if created:
        logger.info("initialized layby settings for store %s", store.pk)
    return settings


def get_layby_settings(store):
    """Return the stored settings, or unsaved defaults when the store has none yet."""
    return LaybySettings.objects.filter(store=store).first() or LaybySettings(store=store)


def generate_layby_number(store, today=None):
    today = today or timezone.localdate()
    return next_document_number(store=store, prefix="LAY", period=str(today.year))


def build_payment_schedule(remaining, schedule_type, start_date):
    """Split ``remaining`` into ``(payment_number, due_date, amount_due)`` rows.

    Each installment is rounded to cents and the last one absorbs the
    rounding difference so the rows always sum to ``remaining``.
    """
    plan = SCHEDULE_PLANS.get(schedule_type)
    remaining = _money(remaining)
    if plan is None or remaining <= 0:
        return []
    interval_days, count = plan
    installment = _money(remaining / count)
    rows = []
    for number in range(1, count + 1):
        amount = installment if number < count else remaining - installment * (count - 1)
        rows.append((number, start_date + timedelta(days=interval_days * number), amount))
    return rows


def generate_payment_schedule(order, start_date=None):
    start_date = start_date or timezone.localdate()
    remaining = order.total_amount - order.deposit_amount
    rows = build_payment_schedule(remaining, order.payment_schedule_type, start_date)
    return LaybyPaymentSchedule.objects.bulk_create(
        [
            LaybyPaymentSchedule(order=order, payment_number=number, due_date=due_date, amount_due=amount)
            for number, due_date, amount in rows
        ]
    )


def _add_history(order, action_type, description, performed_by, **extra):
    return LaybyHistory.objects.create(
        order=order,
        action_type=action_type,
        action_description=description,
        performed_by=performed_by,
        **extra,
    )


def _lock_order(order, expected_version=None):
    locked = LaybyOrder.objects.select_for_update().select_related("store").get(pk=order.pk)
    if expected_version is not None and locked.version != int(expected_version):
        raise ConcurrentUpdateError(
            f"Layby {locked.layby_number} was modified by someone else (version {locked.version}). Reload and retry."
        )
    return locked


def _save_versioned(order, **changes):
    """Write ``changes`` only if nobody bumped the row version since it was read."""
    now = timezone.now()
    updated = LaybyOrder.objects.filter(pk=order.pk, version=order.version).update(
        version=F("version") + 1,
        updated_at=now,
        **changes,
    )
    if updated != 1:
        raise ConcurrentUpdateError(f"Layby {order.layby_number} was modified concurrently. Reload and retry.")
    for field, value in changes.items():
        setattr(order, field, value)
    order.version += 1
    order.updated_at = now
    return order


def create_layby(
    *,
    store,
    user,
    customer,
    items,
    deposit_amount,
    deposit_payment_method=LaybyPaymentMethod.CASH,
    due_date=None,
    payment_schedule_type=ScheduleType.CUSTOM,
    priority_level=PriorityLevel.NORMAL,
    interest_rate=None,
    notes="",
    today=None,
):
    today = today or timezone.localdate()
    settings = get_layby_settings(store)

    if not items:
        raise InvalidStateError("A layby needs at least one item.")
    lines = []
    total = ZERO
    for item in items:
        product = item["product"]
        if product.store_id != store.pk:
            raise InvalidStateError(f"Product {product.sku} does not belong to this store.")
        quantity = int(item["quantity"])
        unit_price = item.get("unit_price")
        unit_price = _money(product.price if unit_price is None else unit_price)
        if quantity < 1:
            raise InvalidStateError("Item quantity must be at least 1.")
        if unit_price < 0:
            raise InvalidPaymentError("Item unit price cannot be negative.")
        lines.append((product, quantity, unit_price))
        total += _money(unit_price * quantity)

    total = _money(total)
    deposit = _money(deposit_amount or 0)
    if total <= 0:
        raise InvalidPaymentError("Layby total must be greater than 0.")
    if deposit < 0:
        raise InvalidPaymentError("Deposit cannot be negative.")
    if deposit >= total:
        raise InvalidPaymentError("Deposit must be less than the layby total.")
    minimum_deposit = _money(total * settings.require_deposit_percent / 100)
    if deposit < minimum_deposit:
        raise InvalidPaymentError(
            f"Deposit must be at least {minimum_deposit} ({settings.require_deposit_percent}% of the total)."
        )

    latest_due = today + timedelta(days=settings.max_layby_duration_days)
    due_date = due_date or latest_due
    if due_date < today:
        raise InvalidStateError("Due date cannot be in the past.")
    if due_date > latest_due:
        raise InvalidStateError(f"Due date cannot be more than {settings.max_layby_duration_days} days away.")

    rate = settings.default_interest_rate if interest_rate is None else Decimal(interest_rate)
    if rate < 0 or rate > 1:
        raise InvalidStateError("Interest rate must be between 0 and 1.")

    name = str(customer.get("name") or "").strip()
    if not name:
        raise InvalidStateError("Customer name is required.")
    phone = str(customer.get("phone") or "").strip()
    email = str(customer.get("email") or "").strip()

    with transaction.atomic():
        customer_obj = None
        if phone:
            customer_obj = Customer.get_or_create_by_phone(store=store, phone=phone, name=name, email=email)

        order = LaybyOrder.objects.create(
            store=store,
            layby_number=generate_layby_number(store, today),
            customer=customer_obj,
            customer_name=name,
            customer_phone=phone,
            customer_email=email,
            total_amount=total,
            deposit_amount=deposit,
            balance_remaining=total - deposit,
            interest_rate=rate,
            priority_level=priority_level,
            payment_schedule_type=payment_schedule_type,
            due_date=due_date,
            inventory_reserved=settings.inventory_reservation_enabled,
            notes=notes or "",
            created_by=user,
        )
        for product, quantity, unit_price in lines:
            LaybyItem.objects.create(
                order=order,
                product=product,
                product_name=product.name,
                quantity=quantity,
                unit_price=unit_price,
            )

        if deposit > 0:
            record_transaction(
                store=store,
                transaction_type=TransactionType.LAYBY_DEPOSIT,
                amount=deposit,
                payment_method=deposit_payment_method,
                processed_by=user,
                reference_type="layby",
                reference_id=order.id,
                customer_name=name,
                description=f"Deposit for layby {order.layby_number}",
            )

        _add_history(
            order,
            HistoryAction.CREATED,
            f"Layby {order.layby_number} created",
            user,
            new_values={
                "total_amount": str(total),
                "deposit_amount": str(deposit),
                "balance_remaining": str(order.balance_remaining),
            },
            amount_involved=deposit,
        )
        generate_payment_schedule(order, start_date=today)

    logger.info("layby %s created store=%s total=%s deposit=%s", order.layby_number, store.pk, total, deposit)
    return order


def _allocate_to_schedule(order, amount):
    remaining = amount
    installments = order.schedule.filter(status__in=[ScheduleStatus.PENDING, ScheduleStatus.OVERDUE]).order_by(
        "due_date", "payment_number"
    )
    for installment in installments:
        if remaining <= 0:
            break
        applied = min(remaining, installment.amount_outstanding)
        installment.amount_paid += applied
        if installment.amount_paid >= installment.amount_due:
            installment.status = ScheduleStatus.PAID
        installment.save(update_fields=["amount_paid", "status", "updated_at"])
        remaining -= applied


def apply_payment(
    *,
    order,
    user,
    amount,
    payment_method=LaybyPaymentMethod.CASH,
    payment_reference="",
    notes="",
    expected_version=None,
):
    amount = _money(amount)
    if amount <= 0:
        raise InvalidPaymentError("Payment amount must be greater than 0.")

    with transaction.atomic():
        locked = _lock_order(order, expected_version)
        if not locked.is_open:
            raise InvalidStateError(f"Cannot take payments on a {locked.status} layby.")
        if amount > locked.balance_remaining:
            raise InvalidPaymentError(f"Payment exceeds the remaining balance of {locked.balance_remaining}.")

        payment = LaybyPayment.objects.create(
            order=locked,
            amount=amount,
            payment_method=payment_method,
            payment_reference=payment_reference or "",
            notes=notes or "",
            processed_by=user,
        )
        old_balance = locked.balance_remaining
        _save_versioned(locked, balance_remaining=old_balance - amount)
        record_transaction(
            store=locked.store,
            transaction_type=TransactionType.LAYBY_PAYMENT,
            amount=amount,
            payment_method=payment_method,
            processed_by=user,
            reference_type="layby",
            reference_id=locked.id,
            customer_name=locked.customer_name,
            description=f"Payment for layby {locked.layby_number}",
            notes=notes or "",
        )
        _add_history(
            locked,
            HistoryAction.PAYMENT_MADE,
            f"Payment of ${amount} received",
            user,
            old_values={"balance_remaining": str(old_balance)},
            new_values={"balance_remaining": str(locked.balance_remaining)},
            amount_involved=amount,
            notes=notes or "",
        )
        _allocate_to_schedule(locked, amount)

    logger.info("layby %s payment %s balance=%s", locked.layby_number, amount, locked.balance_remaining)
    return locked, payment


def complete_layby(*, order, user, notes="", expected_version=None):
    with transaction.atomic():
        locked = _lock_order(order, expected_version)
        if not locked.is_open:
            raise InvalidStateError(f"Cannot complete a {locked.status} layby.")
        if locked.balance_remaining != ZERO:
            raise InvalidStateError(f"Layby still has an outstanding balance of {locked.balance_remaining}.")
        old_status = locked.status
        _save_versioned(locked, status=LaybyStatus.COMPLETED, completion_date=timezone.now())
        _add_history(
            locked,
            HistoryAction.COMPLETED,
            f"Layby {locked.layby_number} completed",
            user,
            old_values={"status": old_status},
            new_values={"status": LaybyStatus.COMPLETED},
            notes=notes or "",
        )
        if has_contact_details(locked):
            queue_notification(locked, NotificationType.COMPLETION_NOTICE, created_by=user)

    logger.info("layby %s completed", locked.layby_number)
    return locked


def cancel_layby(
    *,
    order,
    user,
    reason="",
    fee_percent=None,
    refund_method=LaybyPaymentMethod.CASH,
    expected_version=None,
):
    with transaction.atomic():
        locked = _lock_order(order, expected_version)
        if not locked.is_open:
            raise InvalidStateError(f"Cannot cancel a {locked.status} layby.")
        if fee_percent is None:
            fee_percent = get_layby_settings(locked.store).default_cancellation_fee_percent
        fee_percent = Decimal(fee_percent)
        if fee_percent < 0 or fee_percent > 100:
            raise InvalidPaymentError("Cancellation fee percent must be between 0 and 100.")

        amount_paid = locked.amount_paid
        restocking_fee = _money(amount_paid * fee_percent / 100)
        refund_amount = amount_paid - restocking_fee
        old_status = locked.status
        _save_versioned(
            locked,
            status=LaybyStatus.CANCELLED,
            cancellation_reason=(reason or "")[:255],
            restocking_fee=restocking_fee,
            refund_amount=refund_amount,
            inventory_reserved=False,
        )
        _add_history(
            locked,
            HistoryAction.CANCELLED,
            f"Layby {locked.layby_number} cancelled",
            user,
            old_values={"status": old_status},
            new_values={
                "status": LaybyStatus.CANCELLED,
                "restocking_fee": str(restocking_fee),
                "refund_amount": str(refund_amount),
            },
            amount_involved=refund_amount,
            notes=(reason or "")[:255],
        )
        if refund_amount > 0:
            record_transaction(
                store=locked.store,
                transaction_type=TransactionType.REFUND,
                amount=-refund_amount,
                payment_method=refund_method,
                processed_by=user,
                reference_type="layby",
                reference_id=locked.id,
                customer_name=locked.customer_name,
                description=f"Refund for cancelled layby {locked.layby_number}",
                notes=reason or "",
            )
        if has_contact_details(locked):
            queue_notification(locked, NotificationType.CANCELLATION_NOTICE, created_by=user)

    logger.info("layby %s cancelled fee=%s refund=%s", locked.layby_number, restocking_fee, refund_amount)
    return locked


def calculate_layby_interest(order, as_of=None):
    """Simple daily interest on the remaining balance: ``balance * rate * days / 365``."""
    as_of = as_of or timezone.localdate()
    days = order.days_overdue(as_of)
    if days <= 0 or order.interest_rate <= 0 or order.balance_remaining <= 0:
        return ZERO
    return _money(order.balance_remaining * order.interest_rate * days / Decimal(365))


def overdue_interest_candidates(store, as_of=None):
    as_of = as_of or timezone.localdate()
    queryset = LaybyOrder.objects.filter(
        store=store,
        status=LaybyStatus.OVERDUE,
        balance_remaining__gt=0,
        interest_rate__gt=0,
        due_date__lt=as_of,
    ).order_by("due_date")
    candidates = []
    for order in queryset:
        interest = calculate_layby_interest(order, as_of)
        if interest > 0:
            candidates.append(
                {"order": order, "days_overdue": order.days_overdue(as_of), "calculated_interest": interest}
            )
    return candidates


def selected_interest_total(candidates, selected_ids):
    selected = {str(order_id) for order_id in selected_ids}
    return sum(
        (row["calculated_interest"] for row in candidates if str(row["order"].id) in selected),
        ZERO,
    )


def _apply_interest_to(order, user, as_of):
    with transaction.atomic():
        locked = _lock_order(order)
        interest = calculate_layby_interest(locked, as_of)
        if locked.status != LaybyStatus.OVERDUE or interest <= 0:
            return locked, ZERO
        days = locked.days_overdue(as_of)
        old_values = {
            "interest_amount": str(locked.interest_amount),
            "balance_remaining": str(locked.balance_remaining),
        }
        _save_versioned(
            locked,
            interest_amount=locked.interest_amount + interest,
            balance_remaining=locked.balance_remaining + interest,
        )
        _add_history(
            locked,
            HistoryAction.INTEREST_APPLIED,
            f"Interest applied: ${interest} for {days} days overdue",
            user,
            old_values=old_values,
            new_values={
                "interest_amount": str(locked.interest_amount),
                "balance_remaining": str(locked.balance_remaining),
            },
            amount_involved=interest,
        )
        record_transaction(
            store=locked.store,
            transaction_type=TransactionType.LAYBY_INTEREST,
            amount=interest,
            payment_method="interest_charge",
            processed_by=user,
            reference_type="layby",
            reference_id=locked.id,
            customer_name=locked.customer_name,
            description=f"Interest charge for overdue layby {locked.layby_number}",
        )
    return locked, interest


def apply_interest(*, store, user, order_ids, as_of=None):
    """Charge overdue interest on each selected order independently.

    Running it twice for the same period charges twice.
    """
    as_of = as_of or timezone.localdate()
    orders = {str(order.id): order for order in LaybyOrder.objects.filter(store=store, id__in=order_ids)}
    results = []
    for order_id in order_ids:
        order = orders.get(str(order_id))
        if order is None:
            results.append({"order_id": str(order_id), "status": "not_found", "interest": "0.00"})
            continue
        try:
            locked, interest = _apply_interest_to(order, user, as_of)
        except LedgerError as exc:
            logger.warning("interest on layby %s failed: %s", order.layby_number, exc)
            results.append(
                {
                    "order_id": str(order.id),
                    "layby_number": order.layby_number,
                    "status": "failed",
                    "interest": "0.00",
                    "detail": str(exc),
                }
            )
            continue
        results.append(
            {
                "order_id": str(locked.id),
                "layby_number": locked.layby_number,
                "status": "applied" if interest > 0 else "skipped",
                "interest": str(interest),
                "balance_remaining": str(locked.balance_remaining),
            }
        )
    return results


def update_overdue_laybys(as_of=None, store=None):
    as_of = as_of or timezone.localdate()
    queryset = LaybyOrder.objects.filter(status=LaybyStatus.ACTIVE, due_date__lt=as_of, balance_remaining__gt=0)
    if store is not None:
        queryset = queryset.filter(store=store)

    orders_updated = 0
    for order in queryset:
        with transaction.atomic():
            locked = _lock_order(order)
            if locked.status != LaybyStatus.ACTIVE or locked.balance_remaining <= 0:
                continue
            _save_versioned(locked, status=LaybyStatus.OVERDUE)
            _add_history(
                locked,
                HistoryAction.STATUS_CHANGED,
                "Status changed from active to overdue",
                None,
                old_values={"status": LaybyStatus.ACTIVE},
                new_values={"status": LaybyStatus.OVERDUE},
                notes=f"Due date {locked.due_date.isoformat()} passed",
            )
        orders_updated += 1

    schedules = LaybyPaymentSchedule.objects.filter(
        status=ScheduleStatus.PENDING,
        due_date__lt=as_of,
        amount_paid__lt=F("amount_due"),
    )
    if store is not None:
        schedules = schedules.filter(order__store=store)
    schedules_updated = schedules.update(status=ScheduleStatus.OVERDUE, updated_at=timezone.now())

    logger.info("overdue sweep as_of=%s orders=%s installments=%s", as_of, orders_updated, schedules_updated)
    return {"orders_updated": orders_updated, "schedules_updated": schedules_updated}


def send_payment_reminders(*, store, user, order_ids=None, notes="", automatic=False, now=None):
    """Queue payment reminders, bounded by the store's ``max_reminder_count``.

    ``automatic`` runs also respect ``reminder_frequency_days`` since the last
    reminder. Reminder bookkeeping does not bump the order version.
    """
    now = now or timezone.now()
    settings = get_layby_settings(store)
    queryset = LaybyOrder.objects.filter(store=store, status__in=OPEN_STATUSES, balance_remaining__gt=0)
    if order_ids is not None:
        queryset = queryset.filter(id__in=order_ids)

    results = []
    for order in queryset.order_by("due_date"):
        with transaction.atomic():
            locked = LaybyOrder.objects.select_for_update().select_related("store").get(pk=order.pk)
            if locked.reminder_count >= settings.max_reminder_count:
                results.append({"order_id": str(locked.id), "status": "skipped", "detail": "max reminders reached"})
                continue
            if (
                automatic
                and locked.last_reminder_sent
                and locked.last_reminder_sent > now - timedelta(days=settings.reminder_frequency_days)
            ):
                results.append({"order_id": str(locked.id), "status": "skipped", "detail": "reminded recently"})
                continue
            queue_notification(locked, NotificationType.PAYMENT_REMINDER, created_by=user)
            locked.reminder_count += 1
            locked.last_reminder_sent = now
            locked.save(update_fields=["reminder_count", "last_reminder_sent", "updated_at"])
            _add_history(locked, HistoryAction.REMINDER_SENT, "Payment reminder sent", user, notes=notes or "")
        results.append({"order_id": str(locked.id), "status": "sent", "reminder_count": locked.reminder_count})

    sent = sum(1 for row in results if row["status"] == "sent")
    if sent < len(results):
        logger.warning("reminders store=%s sent=%s skipped=%s", store.pk, sent, len(results) - sent)
    else:
        logger.info("reminders store=%s sent=%s", store.pk, sent)
    return results


def record_manual_notification(*, order, user, notification_type, subject="", message=""):
    if not has_contact_details(order):
        raise InvalidStateError("The customer has no email or phone on file.")
    with transaction.atomic():
        if notification_type != NotificationType.PAYMENT_REMINDER:
            return queue_notification(order, notification_type, created_by=user, subject=subject, message=message)

        locked = _lock_order(order)
        if not locked.is_open:
            raise InvalidStateError(f"Cannot send payment reminders on a {locked.status} layby.")
        max_reminders = get_layby_settings(locked.store).max_reminder_count
        if locked.reminder_count >= max_reminders:
            raise InvalidStateError(f"Layby {locked.layby_number} already received {max_reminders} reminders.")
        notification = queue_notification(locked, notification_type, created_by=user, subject=subject, message=message)
        locked.reminder_count += 1
        locked.last_reminder_sent = timezone.now()
        locked.save(update_fields=["reminder_count", "last_reminder_sent", "updated_at"])
        _add_history(
            locked,
            HistoryAction.REMINDER_SENT,
            "Payment reminder sent",
            user,
            notes=f"Subject: {notification.subject}"[:255],
        )
    return notification


def bulk_update_priority(*, store, user, order_ids, priority_level, notes=""):
    updated = 0
    with transaction.atomic():
        for order in LaybyOrder.objects.select_for_update().filter(store=store, id__in=order_ids):
            old_priority = order.priority_level
            order.priority_level = priority_level
            order.save(update_fields=["priority_level", "updated_at"])
            _add_history(
                order,
                HistoryAction.STATUS_CHANGED,
                f"Priority changed to {priority_level}",
                user,
                old_values={"priority_level": old_priority},
                new_values={"priority_level": priority_level},
                notes=notes or "",
            )
            updated += 1
    return updated


def bulk_add_notes(*, store, user, order_ids, notes):
    updated = 0
    with transaction.atomic():
        for order in LaybyOrder.objects.filter(store=store, id__in=order_ids):
            _add_history(order, HistoryAction.STATUS_CHANGED, "Notes added via bulk action", user, notes=notes)
            updated += 1
    return updated


def compute_layby_stats(orders):
    stats = {
        "total": 0,
        "active": 0,
        "overdue": 0,
        "completed": 0,
        "cancelled": 0,
        "total_value": ZERO,
        "outstanding_balance": ZERO,
        "deposits_collected": ZERO,
    }
    for order in orders:
        stats["total"] += 1
        if order.status in stats:
            stats[order.status] += 1
        stats["total_value"] += order.total_amount
        stats["deposits_collected"] += order.deposit_amount
        if order.status in OPEN_STATUSES:
            stats["outstanding_balance"] += order.balance_remaining
    return stats


def layby_calendar(store, date_from, date_to):
    events = []
    orders = LaybyOrder.objects.filter(store=store, due_date__gte=date_from, due_date__lte=date_to)
    for order in orders:
        events.append(
            {
                "date": order.due_date,
                "kind": "due_date",
                "order_id": order.id,
                "layby_number": order.layby_number,
                "customer_name": order.customer_name,
                "amount": order.balance_remaining,
                "status": order.status,
            }
        )
    installments = LaybyPaymentSchedule.objects.select_related("order").filter(
        order__store=store, due_date__gte=date_from, due_date__lte=date_to
    )
    for installment in installments:
        events.append(
            {
                "date": installment.due_date,
                "kind": "installment",
                "order_id": installment.order_id,
                "layby_number": installment.order.layby_number,
                "customer_name": installment.order.customer_name,
                "amount": installment.amount_outstanding,
                "status": installment.status,
                "payment_number": installment.payment_number,
            }
        )
    events.sort(key=lambda event: (event["date"], event["layby_number"], event.get("payment_number", 0)))
    return events
