import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

LAYBY_STATUS_CHOICES = [
    ("active", "Active"),
    ("overdue", "Overdue"),
    ("completed", "Completed"),
    ("cancelled", "Cancelled"),
]
PRIORITY_CHOICES = [("low", "Low"), ("normal", "Normal"), ("high", "High"), ("urgent", "Urgent")]
SCHEDULE_TYPE_CHOICES = [
    ("custom", "Custom"),
    ("weekly", "Weekly"),
    ("bi_weekly", "Bi-weekly"),
    ("monthly", "Monthly"),
]
PAYMENT_METHOD_CHOICES = [
    ("cash", "Cash"),
    ("card", "Card"),
    ("bank_transfer", "Bank transfer"),
    ("other", "Other"),
]
HISTORY_ACTION_CHOICES = [
    ("created", "Created"),
    ("payment_made", "Payment made"),
    ("status_changed", "Status changed"),
    ("completed", "Completed"),
    ("cancelled", "Cancelled"),
    ("reminder_sent", "Reminder sent"),
    ("interest_applied", "Interest applied"),
]
SCHEDULE_STATUS_CHOICES = [("pending", "Pending"), ("paid", "Paid"), ("overdue", "Overdue"), ("skipped", "Skipped")]
NOTIFICATION_TYPE_CHOICES = [
    ("payment_reminder", "Payment reminder"),
    ("overdue_notice", "Overdue notice"),
    ("completion_notice", "Completion notice"),
    ("cancellation_notice", "Cancellation notice"),
    ("custom", "Custom"),
]
NOTIFICATION_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("sent", "Sent"),
    ("failed", "Failed"),
    ("cancelled", "Cancelled"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        ("stores", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("phone", models.CharField(max_length=50)),
                ("phone_normalized", models.CharField(max_length=50)),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("notes", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "store",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="customers", to="stores.store"
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["store", "name"], name="customer_store_name_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=("store", "phone_normalized"), name="customer_store_phone_unique")
                ],
            },
        ),
        migrations.CreateModel(
            name="LaybyOrder",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("layby_number", models.CharField(max_length=32)),
                ("customer_name", models.CharField(max_length=255)),
                ("customer_phone", models.CharField(blank=True, max_length=50)),
                ("customer_email", models.EmailField(blank=True, max_length=254)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("deposit_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("balance_remaining", models.DecimalField(decimal_places=2, max_digits=12)),
                ("interest_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("interest_rate", models.DecimalField(decimal_places=4, default=Decimal("0.0000"), max_digits=5)),
                ("restocking_fee", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("refund_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("status", models.CharField(choices=LAYBY_STATUS_CHOICES, default="active", max_length=16)),
                ("priority_level", models.CharField(choices=PRIORITY_CHOICES, default="normal", max_length=16)),
                (
                    "payment_schedule_type",
                    models.CharField(choices=SCHEDULE_TYPE_CHOICES, default="custom", max_length=16),
                ),
                ("due_date", models.DateField(blank=True, null=True)),
                ("completion_date", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.CharField(blank=True, max_length=255)),
                ("last_reminder_sent", models.DateTimeField(blank=True, null=True)),
                ("reminder_count", models.PositiveIntegerField(default=0)),
                ("inventory_reserved", models.BooleanField(default=False)),
                ("notes", models.TextField(blank=True)),
                ("version", models.PositiveIntegerField(default=1)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="created_laybys",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="layby_orders",
                        to="layby.customer",
                    ),
                ),
                (
                    "store",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="layby_orders", to="stores.store"
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["store", "status", "due_date"], name="layby_store_status_due_idx"),
                    models.Index(fields=["store", "created_at"], name="layby_store_created_idx"),
                    models.Index(fields=["customer_phone"], name="layby_customer_phone_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("store", "layby_number"), name="layby_store_number_unique"),
                    models.CheckConstraint(condition=models.Q(("total_amount__gt", 0)), name="layby_total_gt_zero"),
                    models.CheckConstraint(
                        condition=models.Q(("deposit_amount__gte", 0)), name="layby_deposit_gte_zero"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("deposit_amount__lt", models.F("total_amount"))),
                        name="layby_deposit_lt_total",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance_remaining__gte", 0)), name="layby_balance_gte_zero"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LaybyItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("product_name", models.CharField(max_length=255)),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("total_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="layby.laybyorder"
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="layby_items", to="catalog.product"
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gte", 1)), name="layby_item_qty_gte_one"),
                    models.CheckConstraint(
                        condition=models.Q(("unit_price__gte", 0)), name="layby_item_price_gte_zero"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LaybyPayment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "payment_method",
                    models.CharField(choices=PAYMENT_METHOD_CHOICES, default="cash", max_length=20),
                ),
                ("payment_reference", models.CharField(blank=True, max_length=100)),
                ("notes", models.CharField(blank=True, max_length=255)),
                ("payment_date", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="payments", to="layby.laybyorder"
                    ),
                ),
                (
                    "processed_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="layby_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["payment_date"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="layby_payment_amount_gt_zero")
                ],
            },
        ),
        migrations.CreateModel(
            name="LaybyHistory",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("action_type", models.CharField(choices=HISTORY_ACTION_CHOICES, max_length=24)),
                ("action_description", models.CharField(max_length=255)),
                ("old_values", models.JSONField(blank=True, null=True)),
                ("new_values", models.JSONField(blank=True, null=True)),
                ("amount_involved", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("performed_at", models.DateTimeField(auto_now_add=True)),
                ("notes", models.CharField(blank=True, max_length=255)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="history", to="layby.laybyorder"
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="layby_history",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-performed_at"],
                "verbose_name_plural": "layby history",
            },
        ),
        migrations.CreateModel(
            name="LaybyPaymentSchedule",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("payment_number", models.PositiveIntegerField()),
                ("due_date", models.DateField()),
                ("amount_due", models.DecimalField(decimal_places=2, max_digits=12)),
                ("amount_paid", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("status", models.CharField(choices=SCHEDULE_STATUS_CHOICES, default="pending", max_length=16)),
                ("reminder_sent", models.BooleanField(default=False)),
                ("notes", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="schedule", to="layby.laybyorder"
                    ),
                ),
            ],
            options={
                "ordering": ["payment_number"],
                "indexes": [models.Index(fields=["status", "due_date"], name="layby_schedule_status_due_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=("order", "payment_number"), name="layby_schedule_number_unique")
                ],
            },
        ),
        migrations.CreateModel(
            name="LaybySettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "default_interest_rate",
                    models.DecimalField(decimal_places=4, default=Decimal("0.0000"), max_digits=5),
                ),
                ("overdue_grace_period_days", models.PositiveIntegerField(default=7)),
                (
                    "require_deposit_percent",
                    models.DecimalField(decimal_places=2, default=Decimal("20.00"), max_digits=5),
                ),
                ("max_layby_duration_days", models.PositiveIntegerField(default=90)),
                ("automatic_reminders_enabled", models.BooleanField(default=True)),
                ("reminder_frequency_days", models.PositiveIntegerField(default=7)),
                ("max_reminder_count", models.PositiveIntegerField(default=3)),
                ("inventory_reservation_enabled", models.BooleanField(default=True)),
                (
                    "default_cancellation_fee_percent",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=5),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "store",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE, related_name="layby_settings", to="stores.store"
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "layby settings",
            },
        ),
        migrations.CreateModel(
            name="LaybyNotification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("notification_type", models.CharField(choices=NOTIFICATION_TYPE_CHOICES, max_length=24)),
                ("recipient_email", models.EmailField(blank=True, max_length=254)),
                ("recipient_phone", models.CharField(blank=True, max_length=50)),
                ("subject", models.CharField(max_length=255)),
                ("message", models.TextField()),
                (
                    "status",
                    models.CharField(choices=NOTIFICATION_STATUS_CHOICES, default="pending", max_length=16),
                ),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="layby_notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="layby.laybyorder",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["status", "created_at"], name="layby_notif_status_idx")],
            },
        ),
    ]
