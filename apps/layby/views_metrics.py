from datetime import date
from decimal import Decimal

from django.db.models import Avg, Count, DecimalField, Sum, Value
from django.db.models.functions import Coalesce, TruncMonth
from django.utils import timezone
from rest_framework import generics
from rest_framework.response import Response

from apps.common.permissions import StoreAccessPermission
from apps.layby.models import OPEN_STATUSES, LaybyOrder, LaybyStatus
from apps.layby.serializers import DateRangeSerializer

MONEY = DecimalField(max_digits=16, decimal_places=2)
ZERO = Value(Decimal("0.00"))


def _percent(part, whole):
    if not whole:
        return Decimal("0.00")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.01"))


class LaybyReportView(generics.GenericAPIView):
    permission_classes = [StoreAccessPermission]
    capability_map = {"get": ["layby.reports"]}

    @staticmethod
    def _apply_date_range(queryset, date_from, date_to):
        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)
        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)
        return queryset

    @staticmethod
    def _summary_for(orders):
        summary = orders.aggregate(
            total_orders=Count("id"),
            total_value=Coalesce(Sum("total_amount"), ZERO, output_field=MONEY),
            average_order_value=Coalesce(Avg("total_amount"), ZERO, output_field=MONEY),
            total_deposits=Coalesce(Sum("deposit_amount"), ZERO, output_field=MONEY),
            total_interest=Coalesce(Sum("interest_amount"), ZERO, output_field=MONEY),
        )
        summary["average_order_value"] = Decimal(summary["average_order_value"]).quantize(Decimal("0.01"))
        summary["outstanding_balance"] = orders.filter(status__in=OPEN_STATUSES).aggregate(
            total=Coalesce(Sum("balance_remaining"), ZERO, output_field=MONEY)
        )["total"]
        completed = orders.filter(status=LaybyStatus.COMPLETED).count()
        summary["completion_rate"] = _percent(completed, summary["total_orders"])
        return summary

    @staticmethod
    def _status_breakdown(orders, total):
        grouped = (
            orders.values("status")
            .annotate(count=Count("id"), value=Coalesce(Sum("total_amount"), ZERO, output_field=MONEY))
            .order_by()
        )
        counts = {row["status"]: row for row in grouped}
        breakdown = []
        for status_value, label in LaybyStatus.choices:
            row = counts.get(status_value, {"count": 0, "value": Decimal("0.00")})
            breakdown.append(
                {
                    "status": status_value,
                    "label": label,
                    "count": row["count"],
                    "value": row["value"],
                    "percentage": _percent(row["count"], total),
                }
            )
        return breakdown

    @staticmethod
    def _top_customers(orders, limit=10):
        return list(
            orders.values("customer_name", "customer_phone")
            .annotate(
                orders=Count("id"),
                total_value=Coalesce(Sum("total_amount"), ZERO, output_field=MONEY),
                outstanding_balance=Coalesce(Sum("balance_remaining"), ZERO, output_field=MONEY),
            )
            .order_by("-total_value", "customer_name")[:limit]
        )

    @staticmethod
    def _monthly_trend(orders, today, months=12):
        start_year, start_month = today.year, today.month - (months - 1)
        while start_month <= 0:
            start_month += 12
            start_year -= 1
        start = date(start_year, start_month, 1)
        rows = {
            row["month"].date() if hasattr(row["month"], "date") else row["month"]: row
            for row in orders.filter(created_at__date__gte=start)
            .annotate(month=TruncMonth("created_at"))
            .values("month")
            .annotate(
                orders=Count("id"),
                total_value=Coalesce(Sum("total_amount"), ZERO, output_field=MONEY),
                deposits=Coalesce(Sum("deposit_amount"), ZERO, output_field=MONEY),
            )
            .order_by("month")
        }
        trend = []
        year, month = start.year, start.month
        for _ in range(months):
            bucket = date(year, month, 1)
            row = rows.get(bucket, {})
            trend.append(
                {
                    "month": bucket.strftime("%Y-%m"),
                    "orders": row.get("orders", 0),
                    "total_value": row.get("total_value", Decimal("0.00")),
                    "deposits": row.get("deposits", Decimal("0.00")),
                }
            )
            month += 1
            if month > 12:
                month = 1
                year += 1
        return trend

    def get(self, request, store_id):
        query = DateRangeSerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        date_from = query.validated_data.get("date_from")
        date_to = query.validated_data.get("date_to")

        store_orders = LaybyOrder.objects.filter(store=request.store)
        orders = self._apply_date_range(store_orders, date_from, date_to)
        summary = self._summary_for(orders)
        return Response(
            {
                "filters": {"date_from": date_from, "date_to": date_to},
                "summary": summary,
                "status_breakdown": self._status_breakdown(orders, summary["total_orders"]),
                "top_customers": self._top_customers(orders),
                "monthly_trend": self._monthly_trend(store_orders, timezone.localdate()),
            }
        )
