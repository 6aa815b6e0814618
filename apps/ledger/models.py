import uuid

from django.db import models


class TransactionType(models.TextChoices):
    SALE = "sale", "Sale"
    LAYBY_DEPOSIT = "layby_deposit", "Layby Deposit"
    LAYBY_PAYMENT = "layby_payment", "Layby Payment"
    LAYBY_INTEREST = "layby_interest", "Layby Interest"
    REFUND = "refund", "Refund"
    ADJUSTMENT = "adjustment", "Adjustment"


REVENUE_TRANSACTION_TYPES = (
    TransactionType.SALE,
    TransactionType.LAYBY_PAYMENT,
    TransactionType.LAYBY_DEPOSIT,
)


class ImmutableTransactionError(RuntimeError):
    pass


class Transaction(models.Model):
    """Write-once ledger row created alongside every financial event."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey("stores.Store", on_delete=models.PROTECT, related_name="transactions")
    transaction_number = models.CharField(max_length=32)
    transaction_type = models.CharField(max_length=24, choices=TransactionType.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=32)
    reference_type = models.CharField(max_length=32, blank=True, default="")
    reference_id = models.CharField(max_length=64, blank=True, default="")
    customer_name = models.CharField(max_length=255, blank=True, default="")
    description = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    processed_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="processed_transactions")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["store", "transaction_number"], name="transaction_store_number_unique"),
        ]
        indexes = [
            models.Index(fields=["store", "created_at"], name="txn_store_created_idx"),
            models.Index(fields=["store", "transaction_type"], name="txn_store_type_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="txn_reference_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableTransactionError("Transactions are write-once and cannot be modified.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableTransactionError("Transactions are write-once and cannot be deleted.")

    def __str__(self):
        return f"{self.transaction_number} {self.transaction_type} {self.amount}"
