import uuid

from django.db import models


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey("stores.Store", on_delete=models.CASCADE, related_name="products")
    sku = models.CharField(max_length=64)
    name = models.CharField(max_length=255, db_index=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(fields=["store", "sku"], name="product_store_sku_unique"),
            models.CheckConstraint(condition=models.Q(price__gte=0), name="product_price_gte_zero"),
        ]

    def save(self, *args, **kwargs):
        self.sku = (self.sku or "").strip().upper()
        self.name = (self.name or "").strip()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.sku} - {self.name}"
