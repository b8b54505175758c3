# apps/board/broker.py

"""
Broker de sincronização em tempo real

Mantém as salas (uma por board) com as conexões inscritas e retransmite
eventos para todos os membros da sala, exceto a conexão que originou a
mudança.

Uma conexão é qualquer objeto com:
- connection_id: str
- async send_event(frame: dict)

O BoardConsumer é a conexão real; os testes usam conexões falsas.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Set

from apps.core.exceptions import (
    AuthError,
    AuthorizationError,
    DadosInvalidos,
    FluxoError,
)

logger = logging.getLogger(__name__)


class ConnectionState:
    CONNECTING = 'connecting'
    AUTHENTICATED = 'authenticated'
    IDLE = 'idle'
    SUBSCRIBED = 'subscribed'
    REJECTED = 'rejected'
    DISCONNECTED = 'disconnected'


@dataclass
class Sessao:
    """Estado de uma conexão dentro do broker"""

    principal: Optional[object] = None
    state: str = ConnectionState.CONNECTING
    rooms: Set[str] = field(default_factory=set)


INTENT_ACTIONS = ('move', 'create', 'update', 'delete', 'comment')


def frame_de_erro(erro):
    return {'type': 'error', 'code': erro.code, 'message': erro.message}


class SyncBroker:
    """
    Salas por board + retransmissão excluindo o remetente

    Colaboradores injetados (todos assíncronos):
    - verify_credential(token) -> principal, ou AuthError
    - has_board_access(principal, board_id) -> bool
    - intent_handler(principal, message) -> [SyncEvent]
    - snapshot_provider(principal, board_id) -> dict
    """

    def __init__(self, verify_credential, has_board_access, intent_handler=None, snapshot_provider=None):
        self.verify_credential = verify_credential
        self.has_board_access = has_board_access
        self.intent_handler = intent_handler
        self.snapshot_provider = snapshot_provider

        # board_id -> set de conexões; única estrutura mutável compartilhada
        self.rooms = {}
        self._lock = asyncio.Lock()

        self._sessoes = {}
        self._conexoes = {}

    # =================== CICLO DE VIDA DA CONEXÃO ===================

    def state_of(self, connection):
        sessao = self._sessoes.get(connection)
        return sessao.state if sessao else ConnectionState.CONNECTING

    def principal_of(self, connection):
        sessao = self._sessoes.get(connection)
        return sessao.principal if sessao else None

    def connection_by_id(self, connection_id):
        """Conexão WebSocket a partir do X-Connection-Id (ou None)"""
        if not connection_id:
            return None
        return self._conexoes.get(connection_id)

    async def authenticate(self, connection, credential):
        """
        Verifica a credencial uma única vez por conexão

        Raises:
            AuthError: credencial ausente, malformada, expirada ou usuário inexistente
        """
        sessao = self._sessoes.setdefault(connection, Sessao())

        if sessao.principal is not None:
            return sessao.principal

        if sessao.state in (ConnectionState.REJECTED, ConnectionState.DISCONNECTED):
            raise AuthError("Conexão encerrada")

        try:
            if not credential:
                raise AuthError("Credencial ausente")
            principal = await self.verify_credential(credential)
        except AuthError as e:
            sessao.state = ConnectionState.REJECTED
            logger.warning(f"🚫 Conexão {connection.connection_id} rejeitada: {e.message}")
            raise

        sessao.principal = principal
        sessao.state = ConnectionState.AUTHENTICATED
        self._conexoes[connection.connection_id] = connection

        # Autenticada e sem salas
        sessao.state = ConnectionState.IDLE
        logger.info(f"✅ Conexão {connection.connection_id} autenticada como {principal.display_name}")
        return principal

    async def join_room(self, connection, board_id):
        """
        Inscreve a conexão na sala do board

        O acesso é consultado a cada join; se negado, nada muda.

        Raises:
            AuthError: conexão não autenticada
            AuthorizationError: principal sem acesso ao board
        """
        sessao = self._sessao_autenticada(connection)
        board_id = str(board_id)

        if not await self.has_board_access(sessao.principal, board_id):
            logger.warning(
                f"🚫 {sessao.principal.display_name} sem acesso ao board {board_id} "
                f"(conexão {connection.connection_id})"
            )
            raise AuthorizationError("Sem acesso ao board", boardId=board_id)

        async with self._lock:
            self.rooms.setdefault(board_id, set()).add(connection)
            sessao.rooms.add(board_id)
            sessao.state = ConnectionState.SUBSCRIBED

        logger.info(f"🚪 {sessao.principal.display_name} entrou na sala do board {board_id}")

    async def leave_room(self, connection, board_id):
        """Idempotente: sair de uma sala em que não está não é erro"""
        board_id = str(board_id)
        async with self._lock:
            self._remover_da_sala(connection, board_id)

    async def disconnect(self, connection):
        """Remove a conexão de todas as salas (sem notificar presença)"""
        async with self._lock:
            sessao = self._sessoes.pop(connection, None)
            salas = list(sessao.rooms) if sessao else [
                board_id for board_id, membros in self.rooms.items() if connection in membros
            ]
            for board_id in salas:
                self._remover_da_sala(connection, board_id)

        if sessao is not None:
            sessao.state = ConnectionState.DISCONNECTED
        if self._conexoes.get(connection.connection_id) is connection:
            del self._conexoes[connection.connection_id]

        logger.info(f"🔌 Conexão {connection.connection_id} desconectada")

    # =================== RETRANSMISSÃO ===================

    async def relay(self, origin, board_id, event):
        """
        Envia o evento para todos os outros membros da sala

        Fire-and-forget: falha em um destinatário é registrada e ignorada,
        sem nova tentativa. origin pode ser None (mudança sem conexão de origem).

        Returns:
            Número de conexões que receberam o evento
        """
        board_id = str(board_id)
        async with self._lock:
            destinatarios = [
                membro for membro in self.rooms.get(board_id, ())
                if membro is not origin
            ]

        frame = {'type': 'event', 'event': event.to_wire()}
        entregues = 0
        for destinatario in destinatarios:
            try:
                await destinatario.send_event(frame)
                entregues += 1
            except Exception as e:
                logger.warning(
                    f"⚠️ Falha ao entregar {event.event_type} para {destinatario.connection_id}: {e}"
                )

        logger.debug(f"📡 {event.event_type} no board {board_id}: {entregues}/{len(destinatarios)} entregues")
        return entregues

    async def relay_all(self, origin, events):
        """Retransmite cada evento na sala do seu próprio board"""
        total = 0
        for event in events:
            total += await self.relay(origin, event.board_id, event)
        return total

    # =================== DESPACHO ===================

    async def handle(self, connection, message):
        """
        Ponto único de entrada das mensagens do cliente

        Returns:
            Frame de resposta para o próprio remetente (erros inclusive)
        """
        try:
            if not isinstance(message, dict):
                raise DadosInvalidos("Mensagem deve ser um objeto JSON")

            action = message.get('action')

            if action == 'ping':
                return {'type': 'pong'}

            elif action == 'join':
                board_id = self._board_id_de(message)
                await self.join_room(connection, board_id)
                return {'type': 'joined', 'boardId': board_id}

            elif action == 'leave':
                board_id = self._board_id_de(message)
                await self.leave_room(connection, board_id)
                return {'type': 'left', 'boardId': board_id}

            elif action == 'sync':
                return await self._sincronizar(connection, message)

            elif action in INTENT_ACTIONS:
                return await self._executar_intencao(connection, message)

            raise DadosInvalidos(f"Ação desconhecida: {action}")

        except FluxoError as e:
            logger.info(f"↩️ Erro para {connection.connection_id}: {e.code} - {e.message}")
            return frame_de_erro(e)
        except Exception as e:
            logger.error(f"❌ Erro inesperado na conexão {connection.connection_id}: {e}")
            return {'type': 'error', 'code': 'internal_error', 'message': 'Erro interno'}

    # =================== MÉTODOS PRIVADOS ===================

    async def _sincronizar(self, connection, message):
        sessao = self._sessao_autenticada(connection)
        board_id = self._board_id_de(message)
        if self.snapshot_provider is None:
            raise DadosInvalidos("Sincronização indisponível")

        snapshot = await self.snapshot_provider(sessao.principal, board_id)
        return {'type': 'snapshot', 'boardId': board_id, 'snapshot': snapshot}

    async def _executar_intencao(self, connection, message):
        """
        Persiste via intent_handler e só então retransmite

        Se a persistência falhar a exceção sobe antes de qualquer relay.
        """
        sessao = self._sessao_autenticada(connection)
        if self.intent_handler is None:
            raise DadosInvalidos("Intenções não suportadas")

        eventos = await self.intent_handler(sessao.principal, message)
        await self.relay_all(connection, eventos)

        return {
            'type': 'ack',
            'action': message.get('action'),
            'requestId': message.get('requestId'),
            'events': [evento.to_wire() for evento in eventos],
        }

    def _sessao_autenticada(self, connection):
        sessao = self._sessoes.get(connection)
        if sessao is None or sessao.principal is None:
            raise AuthError("Conexão não autenticada")
        return sessao

    def _remover_da_sala(self, connection, board_id):
        """Chamar com o lock adquirido"""
        membros = self.rooms.get(board_id)
        if membros is not None:
            membros.discard(connection)
            if not membros:
                del self.rooms[board_id]

        sessao = self._sessoes.get(connection)
        if sessao is not None:
            sessao.rooms.discard(board_id)
            if not sessao.rooms and sessao.state == ConnectionState.SUBSCRIBED:
                sessao.state = ConnectionState.IDLE

    @staticmethod
    def _board_id_de(message):
        board_id = message.get('boardId')
        if board_id in (None, ''):
            raise DadosInvalidos("boardId é obrigatório")
        return str(board_id)
