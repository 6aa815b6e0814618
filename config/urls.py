from django.contrib import admin
from django.urls import include, path

admin.site.site_header = "Layby Ledger"
admin.site.site_title = "Layby Ledger admin"

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", include("apps.health.urls")),
    path("api/v1/", include("apps.api_urls")),
]
