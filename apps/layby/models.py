import re
import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models


def normalize_phone(value):
    raw = str(value or "").strip()
    normalized = re.sub(r"\D+", "", raw)
    return normalized or raw


class LaybyStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    OVERDUE = "overdue", "Overdue"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


OPEN_STATUSES = (LaybyStatus.ACTIVE, LaybyStatus.OVERDUE)


class PriorityLevel(models.TextChoices):
    LOW = "low", "Low"
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"
    URGENT = "urgent", "Urgent"


class ScheduleType(models.TextChoices):
    CUSTOM = "custom", "Custom"
    WEEKLY = "weekly", "Weekly"
    BI_WEEKLY = "bi_weekly", "Bi-weekly"
    MONTHLY = "monthly", "Monthly"


class LaybyPaymentMethod(models.TextChoices):
    CASH = "cash", "Cash"
    CARD = "card", "Card"
    BANK_TRANSFER = "bank_transfer", "Bank transfer"
    OTHER = "other", "Other"


class HistoryAction(models.TextChoices):
    CREATED = "created", "Created"
    PAYMENT_MADE = "payment_made", "Payment made"
    STATUS_CHANGED = "status_changed", "Status changed"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    REMINDER_SENT = "reminder_sent", "Reminder sent"
    INTEREST_APPLIED = "interest_applied", "Interest applied"


class ScheduleStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    OVERDUE = "overdue", "Overdue"
    SKIPPED = "skipped", "Skipped"


class NotificationType(models.TextChoices):
    PAYMENT_REMINDER = "payment_reminder", "Payment reminder"
    OVERDUE_NOTICE = "overdue_notice", "Overdue notice"
    COMPLETION_NOTICE = "completion_notice", "Completion notice"
    CANCELLATION_NOTICE = "cancellation_notice", "Cancellation notice"
    CUSTOM = "custom", "Custom"


class NotificationStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey("stores.Store", on_delete=models.CASCADE, related_name="customers")
    phone = models.CharField(max_length=50)
    phone_normalized = models.CharField(max_length=50)
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True)
    notes = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["store", "phone_normalized"], name="customer_store_phone_unique"),
        ]
        indexes = [
            models.Index(fields=["store", "name"], name="customer_store_name_idx"),
        ]

    def clean(self):
        if not self.phone:
            raise ValidationError("phone is required")
        normalized = normalize_phone(self.phone)
        if not normalized:
            raise ValidationError("phone must contain at least one digit")
        self.phone_normalized = normalized

    def save(self, *args, **kwargs):
        self.phone = str(self.phone or "").strip()
        self.name = str(self.name or "").strip()
        self.phone_normalized = normalize_phone(self.phone)
        self.full_clean(validate_constraints=False)
        super().save(*args, **kwargs)

    @classmethod
    def get_or_create_by_phone(cls, store, phone, name="", email="", notes=""):
        normalized = normalize_phone(phone)
        customer = cls.objects.filter(store=store, phone_normalized=normalized).first()
        if customer:
            updated_fields = []
            for field, value in (("phone", phone), ("name", name), ("email", email), ("notes", notes)):
                value = str(value or "").strip()
                if value and getattr(customer, field) != value:
                    setattr(customer, field, value)
                    updated_fields.append(field)
            if updated_fields:
                updated_fields.extend(["phone_normalized", "updated_at"])
                customer.save(update_fields=updated_fields)
            return customer
        return cls.objects.create(
            store=store,
            phone=str(phone).strip(),
            name=str(name).strip(),
            email=str(email or "").strip(),
            notes=str(notes or "").strip(),
        )

    def __str__(self):
        return f"{self.name} ({self.phone})"


class LaybyOrder(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey("stores.Store", on_delete=models.PROTECT, related_name="layby_orders")
    layby_number = models.CharField(max_length=32)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, null=True, blank=True, related_name="layby_orders")
    customer_name = models.CharField(max_length=255)
    customer_phone = models.CharField(max_length=50, blank=True)
    customer_email = models.EmailField(blank=True)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    deposit_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    balance_remaining = models.DecimalField(max_digits=12, decimal_places=2)
    interest_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    interest_rate = models.DecimalField(max_digits=5, decimal_places=4, default=Decimal("0.0000"))
    restocking_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    status = models.CharField(max_length=16, choices=LaybyStatus.choices, default=LaybyStatus.ACTIVE)
    priority_level = models.CharField(max_length=16, choices=PriorityLevel.choices, default=PriorityLevel.NORMAL)
    payment_schedule_type = models.CharField(max_length=16, choices=ScheduleType.choices, default=ScheduleType.CUSTOM)
    due_date = models.DateField(null=True, blank=True)
    completion_date = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    last_reminder_sent = models.DateTimeField(null=True, blank=True)
    reminder_count = models.PositiveIntegerField(default=0)
    inventory_reserved = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    version = models.PositiveIntegerField(default=1)
    created_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="created_laybys")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["store", "layby_number"], name="layby_store_number_unique"),
            models.CheckConstraint(condition=models.Q(total_amount__gt=0), name="layby_total_gt_zero"),
            models.CheckConstraint(condition=models.Q(deposit_amount__gte=0), name="layby_deposit_gte_zero"),
            models.CheckConstraint(
                condition=models.Q(deposit_amount__lt=models.F("total_amount")),
                name="layby_deposit_lt_total",
            ),
            models.CheckConstraint(condition=models.Q(balance_remaining__gte=0), name="layby_balance_gte_zero"),
        ]
        indexes = [
            models.Index(fields=["store", "status", "due_date"], name="layby_store_status_due_idx"),
            models.Index(fields=["store", "created_at"], name="layby_store_created_idx"),
            models.Index(fields=["customer_phone"], name="layby_customer_phone_idx"),
        ]

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    @property
    def can_complete(self):
        return self.is_open and self.balance_remaining == Decimal("0.00")

    @property
    def amount_paid(self):
        paid = sum((payment.amount for payment in self.payments.all()), Decimal("0.00"))
        return (self.deposit_amount + paid).quantize(Decimal("0.01"))

    def days_overdue(self, as_of):
        if not self.due_date:
            return 0
        return max(0, (as_of - self.due_date).days)

    def __str__(self):
        return f"{self.layby_number} {self.customer_name}"


class LaybyItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(LaybyOrder, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT, related_name="layby_items")
    product_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="layby_item_qty_gte_one"),
            models.CheckConstraint(condition=models.Q(unit_price__gte=0), name="layby_item_price_gte_zero"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Layby items cannot be changed once created.")
        self.total_price = (Decimal(self.quantity) * self.unit_price).quantize(Decimal("0.01"))
        super().save(*args, **kwargs)


class LaybyPayment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(LaybyOrder, on_delete=models.CASCADE, related_name="payments")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=20, choices=LaybyPaymentMethod.choices, default=LaybyPaymentMethod.CASH)
    payment_reference = models.CharField(max_length=100, blank=True)
    notes = models.CharField(max_length=255, blank=True)
    processed_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="layby_payments")
    payment_date = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["payment_date"]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="layby_payment_amount_gt_zero"),
        ]


class LaybyHistory(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(LaybyOrder, on_delete=models.CASCADE, related_name="history")
    action_type = models.CharField(max_length=24, choices=HistoryAction.choices)
    action_description = models.CharField(max_length=255)
    old_values = models.JSONField(null=True, blank=True)
    new_values = models.JSONField(null=True, blank=True)
    amount_involved = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    performed_by = models.ForeignKey(
        "accounts.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="layby_history"
    )
    performed_at = models.DateTimeField(auto_now_add=True)
    notes = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["-performed_at"]
        verbose_name_plural = "layby history"


class LaybyPaymentSchedule(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(LaybyOrder, on_delete=models.CASCADE, related_name="schedule")
    payment_number = models.PositiveIntegerField()
    due_date = models.DateField()
    amount_due = models.DecimalField(max_digits=12, decimal_places=2)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    status = models.CharField(max_length=16, choices=ScheduleStatus.choices, default=ScheduleStatus.PENDING)
    reminder_sent = models.BooleanField(default=False)
    notes = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["payment_number"]
        constraints = [
            models.UniqueConstraint(fields=["order", "payment_number"], name="layby_schedule_number_unique"),
        ]
        indexes = [
            models.Index(fields=["status", "due_date"], name="layby_schedule_status_due_idx"),
        ]

    @property
    def amount_outstanding(self):
        return max(Decimal("0.00"), self.amount_due - self.amount_paid)


class LaybySettings(models.Model):
    store = models.OneToOneField("stores.Store", on_delete=models.CASCADE, related_name="layby_settings")
    default_interest_rate = models.DecimalField(max_digits=5, decimal_places=4, default=Decimal("0.0000"))
    overdue_grace_period_days = models.PositiveIntegerField(default=7)
    require_deposit_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("20.00"))
    max_layby_duration_days = models.PositiveIntegerField(default=90)
    automatic_reminders_enabled = models.BooleanField(default=True)
    reminder_frequency_days = models.PositiveIntegerField(default=7)
    max_reminder_count = models.PositiveIntegerField(default=3)
    inventory_reservation_enabled = models.BooleanField(default=True)
    default_cancellation_fee_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "layby settings"

    def __str__(self):
        return f"Layby settings for {self.store_id}"


class LaybyNotification(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(LaybyOrder, on_delete=models.CASCADE, related_name="notifications")
    notification_type = models.CharField(max_length=24, choices=NotificationType.choices)
    recipient_email = models.EmailField(blank=True)
    recipient_phone = models.CharField(max_length=50, blank=True)
    subject = models.CharField(max_length=255)
    message = models.TextField()
    status = models.CharField(max_length=16, choices=NotificationStatus.choices, default=NotificationStatus.PENDING)
    sent_at = models.DateTimeField(null=True, blank=True)
    error_message = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(
        "accounts.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="layby_notifications"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="layby_notif_status_idx"),
        ]
