# apps/board/sync_client.py

"""
Réplica do board no cliente

Modelo puro (sem Django, sem rede) da cópia local de um board:
- movimentos otimistas usando a mesma aritmética do servidor
- confirmação pelo ack do servidor
- merge dos eventos retransmitidos por outros clientes
- recarga completa quando a cópia local parece velha

O transporte fica de fora: quem usa a réplica envia o MoveIntent
devolvido por move_local e entrega acks/eventos recebidos.
"""

import logging
from typing import Callable, Dict, Optional

from apps.core.exceptions import InvalidRangeError, StaleClientState
from .events import (
    COMMENT_ADDED,
    CONTAINER_REBALANCED,
    ENTITY_CARD,
    ENTITY_CREATED,
    ENTITY_DELETED,
    ENTITY_LIST,
    ENTITY_MOVED,
    ENTITY_UPDATED,
    MoveIntent,
)
from .positions import DEFAULT_PRECISION, DEFAULT_STEP, PositionAllocator, to_key

logger = logging.getLogger(__name__)

APLICADO = 'applied'
IGNORADO = 'ignored'
RECARREGADO = 'reloaded'


def _desempate(entity_id):
    """Empates de chave são desfeitos por id crescente (numérico quando possível)"""
    return (0, int(entity_id), '') if str(entity_id).isdigit() else (1, 0, str(entity_id))


class _StoreLocal:
    """Interface de store do alocador sobre os dicts da réplica"""

    def __init__(self, itens, campo_container):
        self.itens = itens
        self.campo_container = campo_container

    def get_siblings(self, container_id):
        container_id = str(container_id)
        irmaos = [
            item for item in self.itens.values()
            if item[self.campo_container] == container_id
        ]
        irmaos.sort(key=lambda item: (item['orderKey'], _desempate(item['id'])))
        return [(item['id'], item['orderKey']) for item in irmaos]

    def get_sibling_keys(self, container_id):
        return [key for _id, key in self.get_siblings(container_id)]

    def write_positions(self, container_id, assignments):
        for entity_id, order_key in assignments:
            self.itens[entity_id]['orderKey'] = order_key
        return {}


class BoardReplica:
    """
    Cópia local de um board

    fetch_snapshot(board_id) -> dict no formato de snapshot_board do servidor
    """

    def __init__(self, board_id, fetch_snapshot: Callable[[str], dict],
                 step=DEFAULT_STEP, precision=DEFAULT_PRECISION):
        self.board_id = str(board_id)
        self.fetch_snapshot = fetch_snapshot

        self.lists: Dict[str, dict] = {}
        self.cards: Dict[str, dict] = {}
        # entity_id -> (container, chave) anteriores ao movimento otimista
        self.pending: Dict[str, tuple] = {}
        self.reloads = 0

        self.allocators = {
            ENTITY_LIST: PositionAllocator(_StoreLocal(self.lists, 'boardId'), step=step, precision=precision),
            ENTITY_CARD: PositionAllocator(_StoreLocal(self.cards, 'listId'), step=step, precision=precision),
        }

    # =================== ESTADO ===================

    def load(self, snapshot):
        """Substitui todo o estado local pelo snapshot"""
        self.lists.clear()
        self.cards.clear()
        self.pending.clear()

        for lista in snapshot.get('lists', []):
            lista_id = str(lista['id'])
            self.lists[lista_id] = {
                'id': lista_id,
                'boardId': self.board_id,
                'titulo': lista.get('titulo', ''),
                'orderKey': to_key(lista['orderKey']),
                'version': int(lista.get('version', 1)),
            }
            for cartao in lista.get('cards', []):
                cartao_id = str(cartao['id'])
                self.cards[cartao_id] = {
                    **{k: v for k, v in cartao.items() if k not in ('id', 'orderKey', 'version')},
                    'id': cartao_id,
                    'listId': lista_id,
                    'orderKey': to_key(cartao['orderKey']),
                    'version': int(cartao.get('version', 1)),
                    'comments': cartao.get('comments', 0),
                }

    def reload(self):
        """Recuperação de estado velho: busca o board inteiro de novo"""
        logger.info(f"🔄 Recarregando board {self.board_id}")
        self.load(self.fetch_snapshot(self.board_id))
        self.reloads += 1
        return RECARREGADO

    def ordered_lists(self):
        return [lista_id for lista_id, _key in self.allocators[ENTITY_LIST].store.get_siblings(self.board_id)]

    def ordered_cards(self, list_id):
        return [cartao_id for cartao_id, _key in self.allocators[ENTITY_CARD].store.get_siblings(list_id)]

    # =================== MOVIMENTO OTIMISTA ===================

    def move_local(self, entity_type, entity_id, to_container_id=None, target_index=0) -> Optional[MoveIntent]:
        """
        Aplica o movimento localmente e devolve a intenção a enviar

        Returns:
            MoveIntent, ou None se o movimento for no-op
        """
        itens, campo = self._itens(entity_type)
        entity_id = str(entity_id)
        item = itens.get(entity_id)
        if item is None:
            raise KeyError(f"{entity_type} {entity_id} não está na réplica")

        origem = item[campo]
        destino = str(to_container_id) if to_container_id is not None else origem
        if entity_type == ENTITY_CARD and destino not in self.lists:
            raise KeyError(f"Lista {destino} não está na réplica")

        allocator = self.allocators[entity_type]
        try:
            chave = allocator.plan_move(entity_id, origem, destino, target_index)
        except InvalidRangeError:
            # Sem espaço local: o servidor rebalanceia e o ack traz as chaves
            logger.debug(f"⚖️ Sem chave local para {entity_id}; aguardando servidor")
            chave = False

        if chave is None:
            return None

        if chave is not False:
            self.pending.setdefault(entity_id, (origem, item['orderKey']))
            item[campo] = destino
            item['orderKey'] = chave

        return MoveIntent(
            entity_id=entity_id,
            from_container_id=origem,
            to_container_id=destino,
            target_index=target_index,
            entity_type=entity_type,
        )

    def confirm(self, ack):
        """
        Adota chaves e versões confirmadas pelo servidor

        ack: frame {'type': 'ack', 'events': [...]} do WebSocket ou a
        resposta JSON das views (mesma chave 'events').
        """
        resultado = APLICADO
        for evento in ack.get('events', []):
            self.pending.pop(str(evento.get('entityId')), None)
            if self.apply_event(evento) == RECARREGADO:
                resultado = RECARREGADO
        return resultado

    def reject(self, entity_id=None):
        """Servidor recusou a intenção: volta ao estado persistido"""
        if entity_id is not None:
            self.pending.pop(str(entity_id), None)
        return self.reload()

    # =================== EVENTOS RETRANSMITIDOS ===================

    def apply_event(self, event):
        """
        Merge de um evento; nunca levanta exceção por estado velho

        Returns:
            'applied', 'ignored' ou 'reloaded'
        """
        if event.get('type') == 'event':
            event = event['event']

        if str(event.get('boardId')) != self.board_id:
            return IGNORADO

        try:
            return self._aplicar(event)
        except StaleClientState as e:
            logger.info(f"🔄 Estado local velho ({e.message}); recarregando")
            return self.reload()

    def _aplicar(self, event):
        tipo = event.get('eventType')
        entity_type = event.get('entityType', ENTITY_CARD)
        entity_id = str(event.get('entityId'))
        payload = event.get('payload') or {}
        itens, campo = self._itens(entity_type)

        if tipo == ENTITY_MOVED:
            item = self._conhecido(itens, entity_id)
            if not self._versao_nova(item, payload.get('version')):
                return IGNORADO

            destino = str(payload['containerId'])
            if entity_type == ENTITY_CARD and destino not in self.lists:
                # Cartão foi para outro board
                if str(payload.get('fromContainerId')) in self.lists:
                    del itens[entity_id]
                    self.pending.pop(entity_id, None)
                    return APLICADO
                raise StaleClientState("Lista de destino desconhecida", containerId=destino)

            item[campo] = destino
            item['orderKey'] = to_key(payload['orderKey'])
            item['version'] = payload.get('version', item['version'])
            self.pending.pop(entity_id, None)
            return APLICADO

        elif tipo == ENTITY_UPDATED:
            item = self._conhecido(itens, entity_id)
            if not self._versao_nova(item, payload.get('version')):
                return IGNORADO
            item.update(payload.get('fields') or {})
            item['version'] = payload.get('version', item['version'])
            return APLICADO

        elif tipo == ENTITY_CREATED:
            if entity_id in itens:
                return IGNORADO
            container_id = str(payload.get('containerId'))
            if entity_type == ENTITY_CARD and container_id not in self.lists:
                raise StaleClientState("Lista desconhecida", containerId=container_id)
            itens[entity_id] = {
                **(payload.get('fields') or {}),
                'id': entity_id,
                campo: container_id,
                'orderKey': to_key(payload['orderKey']),
                'version': int(payload.get('version', 1)),
            }
            if entity_type == ENTITY_CARD:
                itens[entity_id].setdefault('comments', 0)
            return APLICADO

        elif tipo == ENTITY_DELETED:
            if entity_id not in itens:
                return IGNORADO
            del itens[entity_id]
            self.pending.pop(entity_id, None)
            if entity_type == ENTITY_LIST:
                for cartao_id in [c for c, cartao in self.cards.items() if cartao['listId'] == entity_id]:
                    del self.cards[cartao_id]
                    self.pending.pop(cartao_id, None)
            return APLICADO

        elif tipo == COMMENT_ADDED:
            item = self._conhecido(self.cards, entity_id)
            item['comments'] = item.get('comments', 0) + 1
            return APLICADO

        elif tipo == CONTAINER_REBALANCED:
            if entity_type == ENTITY_CARD and entity_id not in self.lists:
                raise StaleClientState("Container desconhecido", containerId=entity_id)

            # Verifica tudo antes de aplicar: nunca misturar espaços de chave
            novas = []
            for posicao in payload.get('positions', []):
                item = self._conhecido(itens, str(posicao['entityId']))
                if self._versao_nova(item, posicao.get('version')):
                    novas.append((item, posicao))
            for item, posicao in novas:
                item['orderKey'] = to_key(posicao['orderKey'])
                item['version'] = posicao.get('version', item['version'])
            return APLICADO if novas else IGNORADO

        logger.debug(f"Evento ignorado: {tipo}")
        return IGNORADO

    # =================== MÉTODOS PRIVADOS ===================

    def _itens(self, entity_type):
        if entity_type == ENTITY_LIST:
            return self.lists, 'boardId'
        return self.cards, 'listId'

    @staticmethod
    def _conhecido(itens, entity_id):
        item = itens.get(entity_id)
        if item is None:
            raise StaleClientState("Entidade desconhecida", entityId=entity_id)
        return item

    @staticmethod
    def _versao_nova(item, recebida):
        """
        False para versão repetida/antiga; StaleClientState se houver lacuna
        """
        if recebida is None:
            return True
        recebida = int(recebida)
        if recebida <= item['version']:
            return False
        if recebida > item['version'] + 1:
            raise StaleClientState(
                "Lacuna de versão",
                entityId=item['id'],
                local=item['version'],
                recebida=recebida
            )
        return True
