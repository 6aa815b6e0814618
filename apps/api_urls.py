from django.urls import include, path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

store_scoped = [
    path("", include("apps.catalog.urls")),
    path("", include("apps.layby.urls")),
    path("", include("apps.ledger.urls")),
]

urlpatterns = [
    path("auth/token/", TokenObtainPairView.as_view(), name="token-obtain-pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("stores/<uuid:store_id>/", include(store_scoped)),
    path("", include("apps.stores.urls")),
]
