from django.db import transaction
from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response

from apps.audit.services import record_audit
from apps.layby.services import initialize_layby_settings
from apps.stores.models import Store, StoreMember, StoreRole
from apps.stores.serializers import StoreMemberSerializer, StoreSerializer
from apps.stores.services import has_store_access, user_owns_store


class StoreViewSet(viewsets.ModelViewSet):
    serializer_class = StoreSerializer
    http_method_names = ["get", "post", "patch", "head", "options"]

    def get_queryset(self):
        user = self.request.user
        return (
            Store.objects.filter(is_active=True)
            .filter(Q(owner=user) | Q(members__user=user, members__is_active=True))
            .select_related("owner")
            .distinct()
        )

    def get_serializer_context(self):
        context = super().get_serializer_context()
        user = self.request.user
        roles = {store_id: StoreRole.OWNER.value for store_id in Store.objects.filter(owner=user).values_list("id", flat=True)}
        for store_id, role in StoreMember.objects.filter(user=user, is_active=True).values_list("store_id", "role"):
            roles.setdefault(store_id, role)
        context["roles"] = roles
        return context

    def perform_create(self, serializer):
        with transaction.atomic():
            store = serializer.save(owner=self.request.user)
            initialize_layby_settings(store)
            record_audit(
                actor=self.request.user,
                store=store,
                action="store.create",
                entity_type="store",
                entity_id=store.id,
                payload={"code": store.code, "currency": store.currency},
            )

    def perform_update(self, serializer):
        if not user_owns_store(self.request.user, serializer.instance):
            raise PermissionDenied("Only the store owner can change store details.")
        store = serializer.save()
        record_audit(
            actor=self.request.user,
            store=store,
            action="store.update",
            entity_type="store",
            entity_id=store.id,
            payload={"name": store.name, "currency": store.currency},
        )

    @action(detail=True, methods=["get"])
    def members(self, request, pk=None):
        store = self.get_object()
        if not has_store_access(request.user, store, min_role=StoreRole.MANAGER):
            raise PermissionDenied("Managers only.")
        memberships = store.members.select_related("user").order_by("created_at")
        return Response(StoreMemberSerializer(memberships, many=True).data)

    @members.mapping.post
    def add_member(self, request, pk=None):
        store = self.get_object()
        if not user_owns_store(request.user, store):
            raise PermissionDenied("Only the store owner can manage members.")
        serializer = StoreMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.validated_data["user"]
        membership, _ = StoreMember.objects.update_or_create(
            store=store,
            user=user,
            defaults={
                "role": serializer.validated_data.get("role", StoreRole.CASHIER),
                "is_active": serializer.validated_data.get("is_active", True),
            },
        )
        record_audit(
            actor=request.user,
            store=store,
            action="store.member.upsert",
            entity_type="store_member",
            entity_id=membership.id,
            payload={"username": user.username, "role": membership.role, "is_active": membership.is_active},
        )
        return Response(StoreMemberSerializer(membership).data, status=status.HTTP_201_CREATED)
