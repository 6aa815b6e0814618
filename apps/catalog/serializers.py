from rest_framework import serializers

from apps.catalog.models import Product


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["id", "sku", "name", "price", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_sku(self, value):
        value = value.strip().upper()
        if not value:
            raise serializers.ValidationError("sku is required")
        store = self.context["request"].store
        duplicates = Product.objects.filter(store=store, sku=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError("A product with this SKU already exists in the store.")
        return value

    def validate_price(self, value):
        if value < 0:
            raise serializers.ValidationError("price must be zero or greater")
        return value
