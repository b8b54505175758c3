# apps/board/routing.py

from django.urls import re_path
from . import consumers

# Rotas WebSocket para a aplicação board
websocket_urlpatterns = [
    # Conexão única por cliente; as salas de board são escolhidas via join
    re_path(r'ws/sync/$', consumers.BoardConsumer.as_asgi()),
]
