"""
URL configuration for ITDesk.
"""
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    path('admin/', admin.site.urls),

    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # API v1
    path('v1/', include('apps.core.urls')),  # Health check

    # Authentication endpoints
    path('v1/auth/', include('apps.rbac.urls_auth')),  # Login, me, me/permissions

    # RBAC endpoints
    path('v1/', include('apps.rbac.urls')),  # Roles, permissions, assignments, lockout, audit logs
]
