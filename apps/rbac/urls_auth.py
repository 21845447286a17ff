"""
URL routing for authentication endpoints.
"""
from django.urls import path
from apps.rbac.views_auth import LoginView, MePermissionsView, UserProfileView

app_name = 'auth'

urlpatterns = [
    path('login', LoginView.as_view(), name='login'),

    # Current user
    path('me', UserProfileView.as_view(), name='profile'),
    path('me/permissions', MePermissionsView.as_view(), name='me-permissions'),
]
