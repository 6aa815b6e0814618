from django.contrib import admin

from apps.ledger.models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = (
        "transaction_number",
        "store",
        "transaction_type",
        "amount",
        "payment_method",
        "reference_type",
        "reference_id",
        "created_at",
    )
    search_fields = ("transaction_number", "customer_name", "description", "reference_id")
    list_filter = ("transaction_type", "payment_method", "store")

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
