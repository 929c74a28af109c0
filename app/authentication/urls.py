"""
URL configuration for authentication.

Token issuance is delegated to djangorestframework-simplejwt.

URL Structure:
    /api/v1/auth/token/          - POST email + password, returns access/refresh
    /api/v1/auth/token/refresh/  - POST refresh, returns a new access token
"""

from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

app_name = "authentication"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
]
