from apps.layby.models import LaybyNotification, NotificationType


def _money(value):
    return f"${value:.2f}"


def _due(order):
    return order.due_date.isoformat() if order.due_date else "Not set"


def render_notification(order, notification_type, store_name=""):
    """Return the default ``(subject, message)`` pair for a notification type."""
    signature = f"\n\nThank you,\n{store_name}".rstrip()
    if notification_type == NotificationType.PAYMENT_REMINDER:
        return (
            f"Payment Reminder - Layby {order.layby_number}",
            f"Dear {order.customer_name}, this is a reminder about your layby payment. "
            f"Balance remaining: {_money(order.balance_remaining)}",
        )
    if notification_type == NotificationType.OVERDUE_NOTICE:
        return (
            f"Overdue Notice - Layby {order.layby_number}",
            f"Dear {order.customer_name},\n\nYour layby payment is now overdue. "
            "Please contact us immediately to arrange payment.\n\n"
            f"- Layby Number: {order.layby_number}\n"
            f"- Balance Remaining: {_money(order.balance_remaining)}\n"
            f"- Original Due Date: {_due(order)}{signature}",
        )
    if notification_type == NotificationType.COMPLETION_NOTICE:
        return (
            f"Layby Complete - {order.layby_number}",
            f"Dear {order.customer_name},\n\nYour layby has been completed and your items are ready for collection.\n\n"
            f"- Layby Number: {order.layby_number}\n"
            f"- Total Amount: {_money(order.total_amount)}{signature}",
        )
    if notification_type == NotificationType.CANCELLATION_NOTICE:
        return (
            f"Layby Cancelled - {order.layby_number}",
            f"Dear {order.customer_name},\n\nYour layby has been cancelled.\n\n"
            f"- Layby Number: {order.layby_number}\n"
            f"- Refund Amount: {_money(order.refund_amount)}{signature}",
        )
    return "", ""


def queue_notification(order, notification_type, created_by=None, subject="", message=""):
    """Queue a notification for ``order`` as pending; delivery happens elsewhere."""
    if not subject or not message:
        default_subject, default_message = render_notification(order, notification_type, order.store.name)
        subject = subject or default_subject
        message = message or default_message
    return LaybyNotification.objects.create(
        order=order,
        notification_type=notification_type,
        recipient_email=order.customer_email,
        recipient_phone=order.customer_phone,
        subject=subject,
        message=message,
        created_by=created_by,
    )


def has_contact_details(order):
    return bool(order.customer_email or order.customer_phone)
