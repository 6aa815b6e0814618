from django.contrib.auth import get_user_model
from rest_framework import serializers

from apps.stores.models import Store, StoreMember, StoreRole

User = get_user_model()


class StoreSerializer(serializers.ModelSerializer):
    owner_username = serializers.CharField(source="owner.username", read_only=True)
    role = serializers.SerializerMethodField()

    class Meta:
        model = Store
        fields = ["id", "name", "code", "currency", "owner", "owner_username", "role", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "owner", "owner_username", "role", "is_active", "created_at", "updated_at"]

    def get_role(self, obj):
        roles = self.context.get("roles", {})
        return roles.get(obj.id)

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("name is required")
        return value

    def validate_code(self, value):
        value = value.strip().upper()
        if not value:
            raise serializers.ValidationError("code is required")
        if Store.objects.filter(code=value).exclude(pk=getattr(self.instance, "pk", None)).exists():
            raise serializers.ValidationError("A store with this code already exists.")
        return value


class StoreMemberSerializer(serializers.ModelSerializer):
    username = serializers.SlugRelatedField(source="user", slug_field="username", queryset=User.objects.all())

    class Meta:
        model = StoreMember
        fields = ["id", "username", "role", "is_active", "created_at"]
        read_only_fields = ["id", "created_at"]

    def validate_role(self, value):
        if value == StoreRole.OWNER:
            raise serializers.ValidationError("Ownership is set on the store, not through membership.")
        return value
