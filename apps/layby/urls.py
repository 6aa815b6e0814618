from django.urls import path
from rest_framework.routers import SimpleRouter

from apps.layby.views import CustomerViewSet, LaybyOrderViewSet, LaybySettingsView
from apps.layby.views_metrics import LaybyReportView

router = SimpleRouter()
router.register("customers", CustomerViewSet, basename="customer")
router.register("layby-orders", LaybyOrderViewSet, basename="layby-order")

urlpatterns = [
    path("layby-settings/", LaybySettingsView.as_view(), name="layby-settings"),
    path("layby-reports/", LaybyReportView.as_view(), name="layby-reports"),
]
urlpatterns += router.urls
