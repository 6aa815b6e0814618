from django.db import models
from django.db.models import Prefetch, Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.audit.services import record_audit
from apps.common.permissions import StoreAccessPermission
from apps.layby.models import Customer, LaybyItem, LaybyOrder, LaybyStatus, normalize_phone
from apps.layby.serializers import (
    ApplyInterestSerializer,
    BulkActionSerializer,
    CalendarQuerySerializer,
    CustomerCreateSerializer,
    CustomerSerializer,
    LaybyCancelSerializer,
    LaybyCompleteSerializer,
    LaybyCreateSerializer,
    LaybyHistorySerializer,
    LaybyListFilterSerializer,
    LaybyNotificationSerializer,
    LaybyOrderSerializer,
    LaybyPaymentCreateSerializer,
    LaybyPaymentSerializer,
    LaybySettingsSerializer,
    NotificationCreateSerializer,
    ReminderSerializer,
)
from apps.layby.services import (
    apply_interest,
    apply_payment,
    bulk_add_notes,
    bulk_update_priority,
    cancel_layby,
    complete_layby,
    compute_layby_stats,
    create_layby,
    get_layby_settings,
    layby_calendar,
    overdue_interest_candidates,
    record_manual_notification,
    selected_interest_total,
    send_payment_reminders,
    update_overdue_laybys,
)


class CustomerViewSet(viewsets.ModelViewSet):
    serializer_class = CustomerSerializer
    permission_classes = [StoreAccessPermission]
    http_method_names = ["get", "post", "head", "options"]
    capability_map = {
        "list": ["customers.view"],
        "retrieve": ["customers.view"],
        "create": ["customers.manage"],
    }

    def get_queryset(self):
        queryset = Customer.objects.filter(store=self.request.store).order_by("-updated_at")
        phone = self.request.query_params.get("phone")
        query = self.request.query_params.get("q")
        if phone:
            queryset = queryset.filter(phone_normalized=normalize_phone(phone))
        if query:
            normalized = normalize_phone(query)
            queryset = queryset.filter(
                Q(name__icontains=query) | Q(phone__icontains=query) | Q(phone_normalized__icontains=normalized)
            )
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = CustomerCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        customer = Customer.get_or_create_by_phone(store=request.store, **serializer.validated_data)
        return Response(self.get_serializer(customer).data, status=status.HTTP_201_CREATED)


class LaybyOrderViewSet(viewsets.ModelViewSet):
    serializer_class = LaybyOrderSerializer
    permission_classes = [StoreAccessPermission]
    http_method_names = ["get", "post", "head", "options"]
    capability_map = {
        "list": ["layby.view"],
        "retrieve": ["layby.view"],
        "create": ["layby.create"],
        "payments": ["layby.view"],
        "add_payment": ["layby.payment"],
        "history": ["layby.view"],
        "notifications": ["layby.view"],
        "add_notification": ["layby.remind"],
        "complete": ["layby.complete"],
        "cancel": ["layby.cancel"],
        "stats": ["layby.view"],
        "calendar": ["layby.view"],
        "overdue_interest": ["layby.interest"],
        "apply_interest": ["layby.interest"],
        "update_overdue": ["layby.sweep"],
        "reminders": ["layby.remind"],
        "bulk": ["layby.bulk"],
    }

    def get_queryset(self):
        queryset = (
            LaybyOrder.objects.filter(store=self.request.store)
            .select_related("customer", "created_by", "store")
            .prefetch_related(
                Prefetch("items", queryset=LaybyItem.objects.select_related("product")),
                "payments",
                "schedule",
            )
            .order_by(
                models.Case(
                    models.When(status=LaybyStatus.OVERDUE, then=0),
                    models.When(status=LaybyStatus.ACTIVE, then=1),
                    default=2,
                    output_field=models.IntegerField(),
                ),
                "due_date",
                "-created_at",
            )
        )
        if self.action not in {"list", "stats"}:
            return queryset

        filters = LaybyListFilterSerializer(data=self.request.query_params)
        filters.is_valid(raise_exception=True)
        params = filters.validated_data
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("priority_level"):
            queryset = queryset.filter(priority_level=params["priority_level"])
        query = params.get("q")
        if query:
            normalized = normalize_phone(query)
            queryset = queryset.filter(
                Q(layby_number__icontains=query)
                | Q(customer_name__icontains=query)
                | Q(customer_email__icontains=query)
                | Q(customer_phone__icontains=query)
                | Q(customer__phone_normalized__icontains=normalized)
            )
        if params.get("due_before"):
            queryset = queryset.filter(due_date__lte=params["due_before"])
        if params.get("due_after"):
            queryset = queryset.filter(due_date__gte=params["due_after"])
        return queryset

    def _order_response(self, order, status_code=status.HTTP_200_OK):
        order = self.get_queryset().get(pk=order.pk)
        return Response(LaybyOrderSerializer(order, context=self.get_serializer_context()).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = LaybyCreateSerializer(data=request.data, context=self.get_serializer_context())
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = create_layby(
            store=request.store,
            user=request.user,
            customer=data["customer"],
            items=data["items"],
            deposit_amount=data["deposit_amount"],
            deposit_payment_method=data["deposit_payment_method"],
            due_date=data.get("due_date"),
            payment_schedule_type=data["payment_schedule_type"],
            priority_level=data["priority_level"],
            interest_rate=data.get("interest_rate"),
            notes=data.get("notes", ""),
        )
        return self._order_response(order, status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"])
    def payments(self, request, pk=None, **kwargs):
        order = self.get_object()
        return Response(LaybyPaymentSerializer(order.payments.select_related("processed_by"), many=True).data)

    @payments.mapping.post
    def add_payment(self, request, pk=None, **kwargs):
        order = self.get_object()
        serializer = LaybyPaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order, payment = apply_payment(
            order=order,
            user=request.user,
            amount=data["amount"],
            payment_method=data["payment_method"],
            payment_reference=data.get("payment_reference", ""),
            notes=data.get("notes", ""),
            expected_version=data.get("version"),
        )
        response = self._order_response(order, status.HTTP_201_CREATED)
        response.data["payment"] = LaybyPaymentSerializer(payment).data
        return response

    @action(detail=True, methods=["get"])
    def history(self, request, pk=None, **kwargs):
        order = self.get_object()
        return Response(LaybyHistorySerializer(order.history.select_related("performed_by"), many=True).data)

    @action(detail=True, methods=["get"])
    def notifications(self, request, pk=None, **kwargs):
        order = self.get_object()
        return Response(LaybyNotificationSerializer(order.notifications.all(), many=True).data)

    @notifications.mapping.post
    def add_notification(self, request, pk=None, **kwargs):
        order = self.get_object()
        serializer = NotificationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        notification = record_manual_notification(
            order=order,
            user=request.user,
            notification_type=serializer.validated_data["notification_type"],
            subject=serializer.validated_data.get("subject", "").strip(),
            message=serializer.validated_data.get("message", "").strip(),
        )
        return Response(LaybyNotificationSerializer(notification).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None, **kwargs):
        order = self.get_object()
        serializer = LaybyCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = complete_layby(
            order=order,
            user=request.user,
            notes=serializer.validated_data.get("notes", ""),
            expected_version=serializer.validated_data.get("version"),
        )
        return self._order_response(order)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None, **kwargs):
        order = self.get_object()
        serializer = LaybyCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = cancel_layby(
            order=order,
            user=request.user,
            reason=data.get("reason", ""),
            fee_percent=data.get("fee_percent"),
            refund_method=data["refund_method"],
            expected_version=data.get("version"),
        )
        return self._order_response(order)

    @action(detail=False, methods=["get"])
    def stats(self, request, **kwargs):
        return Response(compute_layby_stats(self.get_queryset()))

    @action(detail=False, methods=["get"])
    def calendar(self, request, **kwargs):
        serializer = CalendarQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        events = layby_calendar(
            request.store,
            serializer.validated_data["date_from"],
            serializer.validated_data["date_to"],
        )
        return Response({"events": events})

    @action(detail=False, methods=["get"], url_path="overdue-interest")
    def overdue_interest(self, request, **kwargs):
        candidates = overdue_interest_candidates(request.store)
        selected = request.query_params.getlist("selected")
        rows = [
            {
                "order_id": str(row["order"].id),
                "layby_number": row["order"].layby_number,
                "customer_name": row["order"].customer_name,
                "balance_remaining": row["order"].balance_remaining,
                "interest_rate": row["order"].interest_rate,
                "due_date": row["order"].due_date,
                "days_overdue": row["days_overdue"],
                "calculated_interest": row["calculated_interest"],
            }
            for row in candidates
        ]
        return Response({"results": rows, "selected_total": selected_interest_total(candidates, selected)})

    @action(detail=False, methods=["post"], url_path="apply-interest")
    def apply_interest(self, request, **kwargs):
        serializer = ApplyInterestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        results = apply_interest(
            store=request.store,
            user=request.user,
            order_ids=serializer.validated_data["order_ids"],
            as_of=serializer.validated_data.get("as_of"),
        )
        return Response({"results": results})

    @action(detail=False, methods=["post"], url_path="update-overdue")
    def update_overdue(self, request, **kwargs):
        return Response(update_overdue_laybys(store=request.store))

    @action(detail=False, methods=["post"])
    def reminders(self, request, **kwargs):
        serializer = ReminderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        results = send_payment_reminders(
            store=request.store,
            user=request.user,
            order_ids=serializer.validated_data.get("order_ids"),
            notes=serializer.validated_data.get("notes", ""),
        )
        return Response({"results": results})

    @action(detail=False, methods=["post"])
    def bulk(self, request, **kwargs):
        serializer = BulkActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        if data["action"] == BulkActionSerializer.ACTION_PRIORITY:
            updated = bulk_update_priority(
                store=request.store,
                user=request.user,
                order_ids=data["order_ids"],
                priority_level=data["priority_level"],
                notes=data.get("notes", ""),
            )
        else:
            updated = bulk_add_notes(
                store=request.store,
                user=request.user,
                order_ids=data["order_ids"],
                notes=data["notes"].strip(),
            )
        return Response({"action": data["action"], "updated": updated})


class LaybySettingsView(APIView):
    permission_classes = [StoreAccessPermission]
    capability_map = {"get": ["layby.view"], "put": ["layby.settings"]}

    def get(self, request, store_id):
        return Response(LaybySettingsSerializer(get_layby_settings(request.store)).data)

    def put(self, request, store_id):
        settings = get_layby_settings(request.store)
        before = LaybySettingsSerializer(settings).data if settings.pk else None
        serializer = LaybySettingsSerializer(settings, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        settings = serializer.save(store=request.store)
        record_audit(
            actor=request.user,
            store=request.store,
            action="layby.settings.update",
            entity_type="layby_settings",
            entity_id=settings.pk,
            payload={"before": _jsonable(before), "after": _jsonable(serializer.data)},
        )
        return Response(serializer.data)


def _jsonable(data):
    if data is None:
        return None
    return {key: str(value) if value is not None else None for key, value in data.items()}
