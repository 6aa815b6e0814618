from django.contrib import admin

from apps.layby.models import (
    Customer,
    LaybyHistory,
    LaybyItem,
    LaybyNotification,
    LaybyOrder,
    LaybyPayment,
    LaybyPaymentSchedule,
    LaybySettings,
)


class ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class LaybyItemInline(ReadOnlyInline):
    model = LaybyItem


class LaybyPaymentInline(ReadOnlyInline):
    model = LaybyPayment


class LaybyPaymentScheduleInline(ReadOnlyInline):
    model = LaybyPaymentSchedule


@admin.register(LaybyOrder)
class LaybyOrderAdmin(admin.ModelAdmin):
    list_display = (
        "layby_number",
        "store",
        "customer_name",
        "customer_phone",
        "total_amount",
        "balance_remaining",
        "status",
        "priority_level",
        "due_date",
        "created_at",
    )
    list_filter = ("status", "priority_level", "store")
    search_fields = ("layby_number", "customer_name", "customer_phone", "customer_email")
    autocomplete_fields = ("customer",)
    readonly_fields = (
        "layby_number",
        "total_amount",
        "deposit_amount",
        "balance_remaining",
        "interest_amount",
        "restocking_fee",
        "refund_amount",
        "status",
        "version",
    )
    inlines = [LaybyItemInline, LaybyPaymentInline, LaybyPaymentScheduleInline]


@admin.register(LaybyHistory)
class LaybyHistoryAdmin(admin.ModelAdmin):
    list_display = ("order", "action_type", "action_description", "amount_involved", "performed_by", "performed_at")
    list_filter = ("action_type",)
    search_fields = ("order__layby_number", "action_description")

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(LaybyNotification)
class LaybyNotificationAdmin(admin.ModelAdmin):
    list_display = ("order", "notification_type", "status", "recipient_email", "recipient_phone", "created_at")
    list_filter = ("notification_type", "status")
    search_fields = ("order__layby_number", "recipient_email", "recipient_phone", "subject")


@admin.register(LaybySettings)
class LaybySettingsAdmin(admin.ModelAdmin):
    list_display = (
        "store",
        "default_interest_rate",
        "require_deposit_percent",
        "max_layby_duration_days",
        "max_reminder_count",
        "updated_at",
    )


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("name", "phone", "email", "store", "updated_at")
    list_filter = ("store",)
    search_fields = ("name", "phone", "phone_normalized", "email")
