# apps/core/urls.py

from django.urls import path
from . import views

app_name = 'core'

urlpatterns = [
    # === AUTENTICAÇÃO ===
    # Emissão de token JWT (HTTP e WebSocket usam o mesmo token)
    path('api/auth/token/', views.obter_token, name='token'),
    path('api/auth/me/', views.quem_sou_eu, name='me'),

    # === MONITORAMENTO ===
    path('health/', views.health_check, name='health'),
]
