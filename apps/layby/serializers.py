from decimal import Decimal

from rest_framework import serializers

from apps.catalog.models import Product
from apps.layby.models import (
    Customer,
    LaybyHistory,
    LaybyItem,
    LaybyNotification,
    LaybyOrder,
    LaybyPayment,
    LaybyPaymentMethod,
    LaybyPaymentSchedule,
    LaybySettings,
    LaybyStatus,
    NotificationType,
    PriorityLevel,
    ScheduleType,
    normalize_phone,
)


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ["id", "phone", "phone_normalized", "name", "email", "notes", "created_at", "updated_at"]
        read_only_fields = ["id", "phone_normalized", "created_at", "updated_at"]


class CustomerUpsertSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    phone = serializers.CharField(max_length=50, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    notes = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Customer name is required.")
        return value


class CustomerCreateSerializer(CustomerUpsertSerializer):
    phone = serializers.CharField(max_length=50)

    def validate_phone(self, value):
        if not normalize_phone(value):
            raise serializers.ValidationError("Phone is required.")
        return value


class LaybyItemSerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source="product.sku", read_only=True)

    class Meta:
        model = LaybyItem
        fields = ["id", "product", "product_sku", "product_name", "quantity", "unit_price", "total_price", "created_at"]
        read_only_fields = fields


class StoreProductField(serializers.PrimaryKeyRelatedField):
    def get_queryset(self):
        return Product.objects.filter(store=self.context["request"].store, is_active=True)


class LaybyItemInputSerializer(serializers.Serializer):
    product = StoreProductField()
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.00"), required=False)


class LaybyPaymentSerializer(serializers.ModelSerializer):
    processed_by_username = serializers.CharField(source="processed_by.username", read_only=True)

    class Meta:
        model = LaybyPayment
        fields = [
            "id",
            "amount",
            "payment_method",
            "payment_reference",
            "notes",
            "processed_by",
            "processed_by_username",
            "payment_date",
        ]
        read_only_fields = fields


class LaybyHistorySerializer(serializers.ModelSerializer):
    performed_by_username = serializers.CharField(source="performed_by.username", read_only=True, default=None)

    class Meta:
        model = LaybyHistory
        fields = [
            "id",
            "action_type",
            "action_description",
            "old_values",
            "new_values",
            "amount_involved",
            "performed_by",
            "performed_by_username",
            "performed_at",
            "notes",
        ]
        read_only_fields = fields


class LaybyPaymentScheduleSerializer(serializers.ModelSerializer):
    class Meta:
        model = LaybyPaymentSchedule
        fields = ["id", "payment_number", "due_date", "amount_due", "amount_paid", "status", "reminder_sent", "notes"]
        read_only_fields = fields


class LaybyNotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = LaybyNotification
        fields = [
            "id",
            "notification_type",
            "recipient_email",
            "recipient_phone",
            "subject",
            "message",
            "status",
            "sent_at",
            "error_message",
            "created_by",
            "created_at",
        ]
        read_only_fields = fields


class LaybyOrderSerializer(serializers.ModelSerializer):
    items = LaybyItemSerializer(many=True, read_only=True)
    schedule = LaybyPaymentScheduleSerializer(many=True, read_only=True)
    amount_paid = serializers.SerializerMethodField()
    can_complete = serializers.BooleanField(read_only=True)

    class Meta:
        model = LaybyOrder
        fields = [
            "id",
            "layby_number",
            "customer",
            "customer_name",
            "customer_phone",
            "customer_email",
            "total_amount",
            "deposit_amount",
            "balance_remaining",
            "interest_amount",
            "interest_rate",
            "restocking_fee",
            "refund_amount",
            "amount_paid",
            "status",
            "priority_level",
            "payment_schedule_type",
            "due_date",
            "completion_date",
            "cancellation_reason",
            "last_reminder_sent",
            "reminder_count",
            "inventory_reserved",
            "notes",
            "version",
            "can_complete",
            "created_by",
            "created_at",
            "updated_at",
            "items",
            "schedule",
        ]
        read_only_fields = fields

    def get_amount_paid(self, obj):
        return str(obj.amount_paid)


class LaybyCreateSerializer(serializers.Serializer):
    customer = CustomerUpsertSerializer()
    items = LaybyItemInputSerializer(many=True)
    deposit_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.00"))
    deposit_payment_method = serializers.ChoiceField(choices=LaybyPaymentMethod.choices, default=LaybyPaymentMethod.CASH)
    due_date = serializers.DateField(required=False)
    payment_schedule_type = serializers.ChoiceField(choices=ScheduleType.choices, default=ScheduleType.CUSTOM)
    priority_level = serializers.ChoiceField(choices=PriorityLevel.choices, default=PriorityLevel.NORMAL)
    interest_rate = serializers.DecimalField(
        max_digits=5,
        decimal_places=4,
        min_value=Decimal("0"),
        max_value=Decimal("1"),
        required=False,
    )
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("Add at least one item.")
        return value


class LaybyPaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_method = serializers.ChoiceField(choices=LaybyPaymentMethod.choices, default=LaybyPaymentMethod.CASH)
    payment_reference = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(max_length=255, required=False, allow_blank=True)
    version = serializers.IntegerField(required=False, min_value=1)


class LaybyCompleteSerializer(serializers.Serializer):
    notes = serializers.CharField(max_length=255, required=False, allow_blank=True)
    version = serializers.IntegerField(required=False, min_value=1)


class LaybyCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
    fee_percent = serializers.DecimalField(
        max_digits=5,
        decimal_places=2,
        min_value=Decimal("0"),
        max_value=Decimal("100"),
        required=False,
    )
    refund_method = serializers.ChoiceField(choices=LaybyPaymentMethod.choices, default=LaybyPaymentMethod.CASH)
    version = serializers.IntegerField(required=False, min_value=1)


class OrderSelectionSerializer(serializers.Serializer):
    order_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)


class ApplyInterestSerializer(OrderSelectionSerializer):
    as_of = serializers.DateField(required=False)


class ReminderSerializer(serializers.Serializer):
    order_ids = serializers.ListField(child=serializers.UUIDField(), required=False, allow_empty=False)
    notes = serializers.CharField(max_length=255, required=False, allow_blank=True)


class BulkActionSerializer(OrderSelectionSerializer):
    ACTION_PRIORITY = "update_priority"
    ACTION_NOTES = "add_notes"

    action = serializers.ChoiceField(choices=[ACTION_PRIORITY, ACTION_NOTES])
    priority_level = serializers.ChoiceField(choices=PriorityLevel.choices, required=False)
    notes = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs["action"] == self.ACTION_PRIORITY and not attrs.get("priority_level"):
            raise serializers.ValidationError({"priority_level": "Select a priority level."})
        if attrs["action"] == self.ACTION_NOTES and not (attrs.get("notes") or "").strip():
            raise serializers.ValidationError({"notes": "Enter notes to add."})
        return attrs


class NotificationCreateSerializer(serializers.Serializer):
    notification_type = serializers.ChoiceField(choices=NotificationType.choices)
    subject = serializers.CharField(max_length=255, required=False, allow_blank=True)
    message = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs["notification_type"] == NotificationType.CUSTOM and not (
            (attrs.get("subject") or "").strip() and (attrs.get("message") or "").strip()
        ):
            raise serializers.ValidationError({"message": "Custom notifications need a subject and message."})
        return attrs


class DateRangeSerializer(serializers.Serializer):
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)

    def validate(self, attrs):
        date_from = attrs.get("date_from")
        date_to = attrs.get("date_to")
        if date_from and date_to and date_from > date_to:
            raise serializers.ValidationError({"date_from": "date_from must be before or equal to date_to."})
        return attrs


class CalendarQuerySerializer(DateRangeSerializer):
    date_from = serializers.DateField()
    date_to = serializers.DateField()


class LaybyListFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=LaybyStatus.choices, required=False)
    priority_level = serializers.ChoiceField(choices=PriorityLevel.choices, required=False)
    q = serializers.CharField(required=False, allow_blank=True)
    due_before = serializers.DateField(required=False)
    due_after = serializers.DateField(required=False)


class LaybySettingsSerializer(serializers.ModelSerializer):
    default_interest_rate = serializers.DecimalField(
        max_digits=5, decimal_places=4, min_value=Decimal("0"), max_value=Decimal("1")
    )
    overdue_grace_period_days = serializers.IntegerField(min_value=0, max_value=30)
    require_deposit_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100")
    )
    max_layby_duration_days = serializers.IntegerField(min_value=1, max_value=365)
    reminder_frequency_days = serializers.IntegerField(min_value=1, max_value=30)
    max_reminder_count = serializers.IntegerField(min_value=1, max_value=10)
    default_cancellation_fee_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100")
    )
    configured = serializers.SerializerMethodField()

    class Meta:
        model = LaybySettings
        fields = [
            "default_interest_rate",
            "overdue_grace_period_days",
            "require_deposit_percent",
            "max_layby_duration_days",
            "automatic_reminders_enabled",
            "reminder_frequency_days",
            "max_reminder_count",
            "inventory_reservation_enabled",
            "default_cancellation_fee_percent",
            "configured",
            "updated_at",
        ]
        read_only_fields = ["configured", "updated_at"]

    def get_configured(self, obj):
        return obj.pk is not None
