from rest_framework.permissions import BasePermission

from apps.stores.models import Store, StoreRole
from apps.stores.services import resolve_store_role

CASHIER_CAPABILITIES = {
    "catalog.view",
    "customers.view",
    "customers.manage",
    "layby.view",
    "layby.create",
    "layby.payment",
    "layby.remind",
    "transactions.view",
}

MANAGER_CAPABILITIES = CASHIER_CAPABILITIES | {
    "catalog.manage",
    "layby.complete",
    "layby.cancel",
    "layby.interest",
    "layby.bulk",
    "layby.sweep",
    "layby.reports",
    "layby.settings",
    "transactions.export",
    "transactions.refund",
}

ROLE_CAPABILITIES = {
    StoreRole.OWNER: MANAGER_CAPABILITIES | {"store.manage"},
    StoreRole.MANAGER: MANAGER_CAPABILITIES,
    StoreRole.CASHIER: CASHIER_CAPABILITIES,
}


class StoreAccessPermission(BasePermission):
    """Resolve the store in the URL once per request and gate the view by role.

    Views declare ``capability_map`` keyed by action (or HTTP method for plain
    API views). The resolved store and role are attached to the request as
    ``request.store`` and ``request.store_role``.
    """

    message = "You do not have access to this store."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        store_id = view.kwargs.get("store_id")
        if store_id is None:
            return False
        store = Store.objects.filter(pk=store_id).first()
        if store is None:
            return False
        role = resolve_store_role(request.user, store)
        if role is None:
            return False
        request.store = store
        request.store_role = role

        capability_map = getattr(view, "capability_map", {})
        action = getattr(view, "action", None) or request.method.lower()
        required = capability_map.get(action) or capability_map.get(request.method.lower()) or set()
        if not required:
            return True

        user_caps = ROLE_CAPABILITIES.get(role, set())
        return all(cap in user_caps for cap in required)
