import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("stores", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("transaction_number", models.CharField(max_length=32)),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("sale", "Sale"),
                            ("layby_deposit", "Layby Deposit"),
                            ("layby_payment", "Layby Payment"),
                            ("layby_interest", "Layby Interest"),
                            ("refund", "Refund"),
                            ("adjustment", "Adjustment"),
                        ],
                        max_length=24,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("payment_method", models.CharField(max_length=32)),
                ("reference_type", models.CharField(blank=True, default="", max_length=32)),
                ("reference_id", models.CharField(blank=True, default="", max_length=64)),
                ("customer_name", models.CharField(blank=True, default="", max_length=255)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "processed_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="processed_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "store",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="stores.store"
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["store", "created_at"], name="txn_store_created_idx"),
                    models.Index(fields=["store", "transaction_type"], name="txn_store_type_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="txn_reference_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("store", "transaction_number"), name="transaction_store_number_unique")
                ],
            },
        ),
    ]
