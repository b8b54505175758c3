# apps/board/events.py

"""
Mensagens trocadas pelo protocolo de sincronização

- SyncEvent: notificação retransmitida para os outros membros da sala
- MoveIntent: intenção de movimento enviada pelo cliente (nunca persistida)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

ENTITY_MOVED = 'entity_moved'
ENTITY_UPDATED = 'entity_updated'
ENTITY_CREATED = 'entity_created'
ENTITY_DELETED = 'entity_deleted'
COMMENT_ADDED = 'comment_added'
CONTAINER_REBALANCED = 'container_rebalanced'

EVENT_TYPES = (
    ENTITY_MOVED,
    ENTITY_UPDATED,
    ENTITY_CREATED,
    ENTITY_DELETED,
    COMMENT_ADDED,
    CONTAINER_REBALANCED,
)

ENTITY_CARD = 'card'
ENTITY_LIST = 'list'
ENTITY_TYPES = (ENTITY_CARD, ENTITY_LIST)


@dataclass
class SyncEvent:
    event_type: str
    board_id: str
    entity_type: str
    entity_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    acting_principal: Optional[Any] = None

    def __post_init__(self):
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Tipo de evento desconhecido: {self.event_type}")
        self.board_id = str(self.board_id)
        self.entity_id = str(self.entity_id)

    def to_wire(self):
        """Formato de fio (camelCase), independente de transporte"""
        principal = self.acting_principal
        return {
            'eventType': self.event_type,
            'boardId': self.board_id,
            'entityType': self.entity_type,
            'entityId': self.entity_id,
            'payload': dict(self.payload),
            'actingPrincipal': principal.as_wire() if principal is not None else None,
        }


@dataclass(frozen=True)
class MoveIntent:
    entity_id: str
    from_container_id: Optional[str]
    to_container_id: str
    target_index: int
    entity_type: str = ENTITY_CARD

    def to_message(self):
        return {
            'action': 'move',
            'entityType': self.entity_type,
            'entityId': self.entity_id,
            'fromContainerId': self.from_container_id,
            'toContainerId': self.to_container_id,
            'targetIndex': self.target_index,
        }
