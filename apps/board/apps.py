# apps/board/apps.py

import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class BoardConfig(AppConfig):
    """Configuração da app Board"""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.board'
    verbose_name = 'Board - Sincronização'

    broker = None
    service = None

    def ready(self):
        """
        Inicialização da app
        Monta o serviço de sincronização e o broker deste processo
        """
        from channels.db import database_sync_to_async

        from apps.core.auth_service import auth_service
        from apps.core.permissions import PermissoesBoard
        from .broker import SyncBroker
        from .services import BoardSyncService, IntentHandler

        self.service = BoardSyncService()
        self.broker = SyncBroker(
            verify_credential=database_sync_to_async(auth_service.obter_principal),
            has_board_access=database_sync_to_async(PermissoesBoard.principal_tem_acesso),
            intent_handler=IntentHandler(self.service),
            snapshot_provider=database_sync_to_async(self.service.snapshot_board),
        )

        logger.info("🔌 Board App inicializada - broker de sincronização pronto")
