# apps/board/consumers.py

import json
import logging
import uuid
from urllib.parse import parse_qs

from channels.generic.websocket import AsyncWebsocketConsumer
from django.apps import apps
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

from apps.core.auth_service import extrair_token_bearer
from apps.core.exceptions import AuthError

logger = logging.getLogger(__name__)

# Fechamento do handshake por credencial inválida
CLOSE_AUTH_FAILED = 4401


class BoardConsumer(AsyncWebsocketConsumer):
    """
    Consumer WebSocket do protocolo de sincronização

    Uma conexão autenticada pode estar em várias salas de board ao mesmo
    tempo. Toda mensagem recebida vai para broker.handle(); a resposta
    volta só para esta conexão.
    """

    broker = None

    def __init__(self, *args, broker=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.broker = broker
        self.connection_id = uuid.uuid4().hex
        self.principal = None

    def get_broker(self):
        if self.broker is None:
            self.broker = apps.get_app_config('board').broker
        return self.broker

    async def connect(self):
        """
        Autentica antes de aceitar: credencial ruim fecha o handshake
        """
        broker = self.get_broker()

        try:
            self.principal = await broker.authenticate(self, self.extrair_token())
        except AuthError as e:
            logger.warning(f"❌ Conexão WebSocket rejeitada - {e.message}")
            await self.close(code=CLOSE_AUTH_FAILED)
            return

        await self.accept()
        await self.send_event({
            'type': 'connected',
            'connectionId': self.connection_id,
            'principal': self.principal.as_wire(),
            'heartbeatInterval': getattr(settings, 'FLUXO_WS_HEARTBEAT_INTERVAL', 30),
        })

    async def disconnect(self, close_code):
        await self.get_broker().disconnect(self)

    async def receive(self, text_data=None, bytes_data=None):
        """Recebe mensagens do cliente e despacha para o broker"""
        try:
            message = json.loads(text_data or '')
        except json.JSONDecodeError:
            logger.error(f"❌ JSON inválido recebido via WebSocket ({self.connection_id})")
            await self.send_event({
                'type': 'error',
                'code': 'invalid_payload',
                'message': 'JSON inválido',
            })
            return

        reply = await self.get_broker().handle(self, message)
        if reply is not None:
            await self.send_event(reply)

    async def send_event(self, frame):
        """Usado pelo broker para entregar respostas e eventos retransmitidos"""
        await self.send(text_data=json.dumps(frame, cls=DjangoJSONEncoder))

    # === Métodos auxiliares ===

    def extrair_token(self):
        """Token do parâmetro ?token= ou do header Authorization: Bearer"""
        query = parse_qs(self.scope.get('query_string', b'').decode())
        if query.get('token'):
            return query['token'][0]

        for nome, valor in self.scope.get('headers', []):
            if nome.lower() == b'authorization':
                return extrair_token_bearer(valor.decode())

        return None
