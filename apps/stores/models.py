import uuid

from django.db import models


class StoreRole(models.TextChoices):
    OWNER = "owner", "Owner"
    MANAGER = "manager", "Manager"
    CASHIER = "cashier", "Cashier"


ROLE_RANK = {
    StoreRole.CASHIER: 1,
    StoreRole.MANAGER: 2,
    StoreRole.OWNER: 3,
}


class Store(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=16, unique=True)
    currency = models.CharField(max_length=3, default="USD")
    owner = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="owned_stores")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        self.currency = (self.currency or "USD").strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} ({self.code})"


class StoreMember(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name="members")
    user = models.ForeignKey("accounts.User", on_delete=models.CASCADE, related_name="store_memberships")
    role = models.CharField(max_length=16, choices=StoreRole.choices, default=StoreRole.CASHIER)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["store", "user"], name="store_member_unique"),
        ]
        indexes = [
            models.Index(fields=["user", "is_active"], name="store_member_user_idx"),
        ]

    def __str__(self):
        return f"{self.user} @ {self.store.code} ({self.role})"


class DocumentSequence(models.Model):
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name="sequences")
    prefix = models.CharField(max_length=16)
    period = models.CharField(max_length=16)
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["store", "prefix", "period"], name="document_sequence_unique"),
        ]
