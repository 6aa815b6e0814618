from django.db.models import Q
from rest_framework import viewsets

from apps.audit.services import record_audit
from apps.catalog.models import Product
from apps.catalog.serializers import ProductSerializer
from apps.common.permissions import StoreAccessPermission


class ProductViewSet(viewsets.ModelViewSet):
    serializer_class = ProductSerializer
    permission_classes = [StoreAccessPermission]
    http_method_names = ["get", "post", "patch", "head", "options"]
    capability_map = {
        "list": ["catalog.view"],
        "retrieve": ["catalog.view"],
        "create": ["catalog.manage"],
        "partial_update": ["catalog.manage"],
    }

    def get_queryset(self):
        queryset = Product.objects.filter(store=self.request.store)
        query = self.request.query_params.get("q")
        if query:
            queryset = queryset.filter(Q(name__icontains=query) | Q(sku__icontains=query))
        is_active = self.request.query_params.get("is_active")
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active.strip().lower() in {"1", "true", "yes"})
        return queryset

    def perform_create(self, serializer):
        product = serializer.save(store=self.request.store)
        record_audit(
            actor=self.request.user,
            store=self.request.store,
            action="catalog.product.create",
            entity_type="product",
            entity_id=product.id,
            payload={"sku": product.sku, "name": product.name, "price": str(product.price)},
        )

    def perform_update(self, serializer):
        before = {"name": serializer.instance.name, "price": str(serializer.instance.price), "is_active": serializer.instance.is_active}
        product = serializer.save()
        record_audit(
            actor=self.request.user,
            store=self.request.store,
            action="catalog.product.update",
            entity_type="product",
            entity_id=product.id,
            payload={"before": before, "after": {"name": product.name, "price": str(product.price), "is_active": product.is_active}},
        )
