from rest_framework import serializers

from apps.ledger.models import Transaction, TransactionType


class TransactionSerializer(serializers.ModelSerializer):
    processed_by_username = serializers.CharField(source="processed_by.username", read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "transaction_number",
            "transaction_type",
            "amount",
            "payment_method",
            "reference_type",
            "reference_id",
            "customer_name",
            "description",
            "notes",
            "processed_by",
            "processed_by_username",
            "created_at",
        ]
        read_only_fields = fields


class TransactionFilterSerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True)
    transaction_type = serializers.ChoiceField(choices=TransactionType.choices, required=False)
    payment_method = serializers.CharField(required=False, allow_blank=True)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)

    def validate(self, attrs):
        date_from = attrs.get("date_from")
        date_to = attrs.get("date_to")
        if date_from and date_to and date_from > date_to:
            raise serializers.ValidationError({"date_from": "date_from must be before or equal to date_to."})
        return attrs


class TransactionRefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField(max_length=200)

    def validate_reason(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("reason is required")
        return value
