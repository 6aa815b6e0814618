from django.contrib import admin

from apps.catalog.models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("sku", "name", "store", "price", "is_active", "updated_at")
    list_filter = ("is_active", "store")
    search_fields = ("sku", "name")
