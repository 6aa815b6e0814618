from django.db.models import Q
from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.audit.services import record_audit
from apps.common.exceptions import InvalidStateError
from apps.common.permissions import StoreAccessPermission
from apps.ledger.models import Transaction
from apps.ledger.serializers import TransactionFilterSerializer, TransactionRefundSerializer, TransactionSerializer
from apps.ledger.services import refund_transaction, revenue_summary, transactions_to_csv


class TransactionViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = TransactionSerializer
    permission_classes = [StoreAccessPermission]
    capability_map = {
        "list": ["transactions.view"],
        "retrieve": ["transactions.view"],
        "summary": ["transactions.view"],
        "export": ["transactions.export"],
        "refund": ["transactions.refund"],
    }

    def get_queryset(self):
        queryset = Transaction.objects.filter(store=self.request.store).select_related("processed_by", "store")
        if self.action not in {"list", "summary", "export"}:
            return queryset

        filters = TransactionFilterSerializer(data=self.request.query_params)
        filters.is_valid(raise_exception=True)
        params = filters.validated_data

        query = params.get("q")
        if query:
            queryset = queryset.filter(
                Q(transaction_number__icontains=query)
                | Q(customer_name__icontains=query)
                | Q(description__icontains=query)
            )
        if params.get("transaction_type"):
            queryset = queryset.filter(transaction_type=params["transaction_type"])
        if params.get("payment_method"):
            queryset = queryset.filter(payment_method=params["payment_method"])
        if params.get("date_from"):
            queryset = queryset.filter(created_at__date__gte=params["date_from"])
        if params.get("date_to"):
            queryset = queryset.filter(created_at__date__lte=params["date_to"])
        return queryset

    @action(detail=False, methods=["get"])
    def summary(self, request, **kwargs):
        return Response(revenue_summary(self.get_queryset()))

    @action(detail=False, methods=["get"])
    def export(self, request, **kwargs):
        transactions = list(self.get_queryset())
        if not transactions:
            raise InvalidStateError("No transactions to export.")
        response = HttpResponse(transactions_to_csv(transactions), content_type="text/csv; charset=utf-8")
        filename = f"transactions_{timezone.localdate().isoformat()}.csv"
        response["Content-Disposition"] = f'attachment; filename="{filename}"'
        return response

    @action(detail=True, methods=["post"])
    def refund(self, request, pk=None, **kwargs):
        original = self.get_object()
        serializer = TransactionRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        refund = refund_transaction(
            original=original,
            amount=serializer.validated_data["amount"],
            reason=serializer.validated_data["reason"],
            processed_by=request.user,
        )
        record_audit(
            actor=request.user,
            store=request.store,
            action="transaction.refund",
            entity_type="transaction",
            entity_id=original.id,
            payload={"refund_id": str(refund.id), "amount": str(-refund.amount)},
        )
        return Response(TransactionSerializer(refund).data, status=status.HTTP_201_CREATED)
