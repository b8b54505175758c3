# apps/board/services.py

"""
Serviço de sincronização do board

Resolve intenções (mover, criar, atualizar, excluir, comentar) contra o
banco e devolve os eventos que devem ser retransmitidos. Nunca retransmite
por conta própria: quem chama só chama broker.relay depois que este serviço
retornou, ou seja, depois que a escrita foi confirmada. Se a persistência
falhar, a exceção sobe como PersistenceFailure e nenhum evento existe.
"""

import logging

from channels.db import database_sync_to_async
from django.conf import settings
from django.core.paginator import Paginator
from django.db import transaction
from django.db.models import Count

from apps.core.auth_service import Principal
from apps.core.exceptions import (
    AuthorizationError,
    DadosInvalidos,
    EntidadeNaoEncontrada,
    InvalidRangeError,
)
from apps.core.models import Atividade, Board, Cartao, Comentario, Lista
from apps.core.permissions import PermissoesBoard
from . import forms as board_forms
from .events import (
    COMMENT_ADDED,
    CONTAINER_REBALANCED,
    ENTITY_CARD,
    ENTITY_CREATED,
    ENTITY_DELETED,
    ENTITY_LIST,
    ENTITY_MOVED,
    ENTITY_UPDATED,
    SyncEvent,
)
from .positions import DEFAULT_PRECISION, DEFAULT_STEP, PositionAllocator
from .storage import card_store, gravacao, list_store

logger = logging.getLogger(__name__)

ATIVIDADES_POR_PAGINA = 20


def formatar_chave(chave):
    """Decimal -> string no fio (evita perda de precisão em float)"""
    return str(chave)


def formatar_valor(valor):
    if hasattr(valor, 'isoformat'):
        return valor.isoformat()
    return valor


class BoardSyncService:
    """
    Orquestra alocador + persistência + autorização

    Dependências explícitas: os stores, o alocador e a verificação de acesso
    são injetados (ou montados a partir do settings), nunca lidos de estado
    global. O principal chega como argumento em toda operação.
    """

    def __init__(self, step=None, precision=None, stores=None, has_board_access=None):
        step = step if step is not None else getattr(settings, 'FLUXO_POSITION_STEP', DEFAULT_STEP)
        precision = precision if precision is not None else getattr(
            settings, 'FLUXO_POSITION_PRECISION', DEFAULT_PRECISION
        )

        self.stores = stores or {
            ENTITY_LIST: list_store(),
            ENTITY_CARD: card_store(),
        }
        self.allocators = {
            entity_type: PositionAllocator(store, step=step, precision=precision)
            for entity_type, store in self.stores.items()
        }
        self.has_board_access = has_board_access or PermissoesBoard.principal_tem_acesso

    # =================== OPERAÇÕES ===================

    def mover(self, principal, entity_type, entity_id, to_container_id, target_index):
        """
        Move lista (dentro do board) ou cartão (entre listas)

        Returns:
            Lista de SyncEvent - vazia se o movimento for no-op
        """
        store = self.stores[entity_type]
        allocator = self.allocators[entity_type]

        entidade = store.get_entity_by_id(entity_id)
        origem = self._container_de(entity_type, entidade)
        destino = to_container_id if to_container_id not in (None, '') else origem
        destino = self._normalizar_id(destino)

        board_origem = self._board_do_container(entity_type, origem)
        board_destino = self._board_do_container(entity_type, destino)
        self._verificar_acesso(principal, board_origem)
        if board_destino != board_origem:
            if entity_type == ENTITY_LIST:
                raise DadosInvalidos("Lista não pode mudar de board")
            self._verificar_acesso(principal, board_destino)

        antes, depois = [], []
        with gravacao("Falha ao mover entidade", entity_id=str(entidade.pk)), transaction.atomic():
            # A leitura dos vizinhos acontece aqui, imediatamente antes da escrita
            chave = self._alocar(
                allocator,
                destino,
                lambda: allocator.plan_move(entidade.pk, origem, destino, target_index),
                antes,
            )
            if chave is None:
                logger.debug(f"↔️ Movimento no-op de {entity_type} {entidade.pk}")
                return []

            versao = store.write_entity_position(entidade.pk, destino, chave)
            self._rebalancear_se_necessario(allocator, destino, depois)
            self._registrar(
                principal, board_destino, f'{entity_type}_moved', entity_type, entidade.pk,
                fromContainerId=str(origem),
                toContainerId=str(destino),
            )

        logger.info(
            f"📦 {entity_type} {entidade.pk} movido {origem} -> {destino} "
            f"(ordem={chave}) por {principal.display_name}"
        )

        payload = {
            'containerId': str(destino),
            'fromContainerId': str(origem),
            'orderKey': formatar_chave(chave),
            'version': versao,
        }
        movimentos = [
            SyncEvent(ENTITY_MOVED, board_destino, entity_type, entidade.pk, payload, principal)
        ]
        if board_origem != board_destino:
            movimentos.append(
                SyncEvent(ENTITY_MOVED, board_origem, entity_type, entidade.pk, dict(payload), principal)
            )
        return self._com_rebalanceamentos(entity_type, board_destino, antes, movimentos, depois, principal)

    def criar_lista(self, principal, board_id, titulo, target_index=None):
        board_id = self._board_do_container(ENTITY_LIST, self._normalizar_id(board_id))
        self._verificar_acesso(principal, board_id)

        allocator = self.allocators[ENTITY_LIST]
        antes, depois = [], []
        with gravacao("Falha ao criar lista", boardId=str(board_id)), transaction.atomic():
            chave = self._alocar(
                allocator,
                board_id,
                lambda: self._chave_para_nova(allocator, board_id, target_index),
                antes,
            )
            lista = Lista.objects.create(titulo=titulo, board_id=board_id, ordem=chave)
            self._rebalancear_se_necessario(allocator, board_id, depois)
            self._registrar(principal, board_id, 'list_created', ENTITY_LIST, lista.pk, titulo=titulo)

        logger.info(f"🆕 Lista '{titulo}' criada no board {board_id}")
        criacao = self._evento_criacao(ENTITY_LIST, board_id, lista, {'titulo': lista.titulo}, principal)
        return self._com_rebalanceamentos(ENTITY_LIST, board_id, antes, [criacao], depois, principal)

    def criar_cartao(self, principal, lista_id, titulo, descricao='', target_index=None):
        lista_id = self._normalizar_id(lista_id)
        board_id = self._board_do_container(ENTITY_CARD, lista_id)
        self._verificar_acesso(principal, board_id)

        allocator = self.allocators[ENTITY_CARD]
        antes, depois = [], []
        with gravacao("Falha ao criar cartão", listaId=str(lista_id)), transaction.atomic():
            chave = self._alocar(
                allocator,
                lista_id,
                lambda: self._chave_para_nova(allocator, lista_id, target_index),
                antes,
            )
            cartao = Cartao.objects.create(
                titulo=titulo,
                descricao=descricao or '',
                lista_id=lista_id,
                ordem=chave,
                criado_por_id=principal.id,
            )
            self._rebalancear_se_necessario(allocator, lista_id, depois)
            self._registrar(principal, board_id, 'card_created', ENTITY_CARD, cartao.pk, titulo=titulo)

        logger.info(f"🆕 Cartão '{titulo}' criado na lista {lista_id}")
        campos = {'titulo': cartao.titulo, 'descricao': cartao.descricao}
        criacao = self._evento_criacao(ENTITY_CARD, board_id, cartao, campos, principal)
        return self._com_rebalanceamentos(ENTITY_CARD, board_id, antes, [criacao], depois, principal)

    def atualizar(self, principal, entity_type, entity_id, campos):
        """
        Atualiza campos de lista/cartão

        Só os campos que realmente mudaram são gravados e retransmitidos.
        """
        campos = board_forms.validar_campos(entity_type, campos)
        store = self.stores[entity_type]

        with gravacao("Falha ao atualizar entidade", entity_id=str(entity_id)), transaction.atomic():
            entidade = store.get_entity_by_id(entity_id)
            board_id = self._board_do_container(entity_type, self._container_de(entity_type, entidade))
            self._verificar_acesso(principal, board_id)

            alterados = {
                nome: valor for nome, valor in campos.items()
                if getattr(entidade, nome) != valor
            }
            if not alterados:
                return []

            versao = store.write_fields(entidade.pk, alterados)
            self._registrar(
                principal, board_id, f'{entity_type}_updated', entity_type, entidade.pk,
                fields=sorted(alterados),
            )

        payload = {
            'fields': {nome: formatar_valor(valor) for nome, valor in alterados.items()},
            'version': versao,
        }
        return [SyncEvent(ENTITY_UPDATED, board_id, entity_type, entidade.pk, payload, principal)]

    def excluir(self, principal, entity_type, entity_id):
        """
        Exclui lista (com seus cartões) ou cartão

        Os irmãos restantes mantêm chave e versão: exclusão nunca
        rebalanceia o container.
        """
        store = self.stores[entity_type]

        with gravacao("Falha ao excluir entidade", entity_id=str(entity_id)), transaction.atomic():
            entidade = store.get_entity_by_id(entity_id)
            container_id = self._container_de(entity_type, entidade)
            board_id = self._board_do_container(entity_type, container_id)
            self._verificar_acesso(principal, board_id)

            pk, titulo = entidade.pk, entidade.titulo
            entidade.delete()
            self._registrar(principal, board_id, f'{entity_type}_deleted', entity_type, pk, titulo=titulo)

        logger.info(f"🗑️ {entity_type} {pk} excluído do board {board_id} por {principal.display_name}")
        payload = {'containerId': str(container_id)}
        return [SyncEvent(ENTITY_DELETED, board_id, entity_type, pk, payload, principal)]

    def adicionar_comentario(self, principal, cartao_id, texto):
        texto = (texto or '').strip()
        if not texto:
            raise DadosInvalidos("Comentário não pode estar vazio")

        with gravacao("Falha ao gravar comentário", entity_id=str(cartao_id)), transaction.atomic():
            cartao = self.stores[ENTITY_CARD].get_entity_by_id(cartao_id)
            board_id = self._board_do_container(ENTITY_CARD, cartao.lista_id)
            self._verificar_acesso(principal, board_id)

            comentario = Comentario.objects.create(
                cartao=cartao,
                usuario_id=principal.id,
                texto=texto
            )
            self._registrar(
                principal, board_id, 'comment_added', ENTITY_CARD, cartao.pk,
                commentId=str(comentario.pk),
                texto=texto[:200],
            )

        payload = {
            'fields': {
                'commentId': str(comentario.pk),
                'texto': comentario.texto,
                'criadoEm': comentario.criado_em.isoformat(),
            },
        }
        return [SyncEvent(COMMENT_ADDED, board_id, ENTITY_CARD, cartao.pk, payload, principal)]

    def snapshot_board(self, principal, board_id):
        """
        Estado atual completo do board (listas e cartões ordenados)

        Usado no carregamento inicial e na recuperação de estado velho.
        """
        board_id = self._board_do_container(ENTITY_LIST, self._normalizar_id(board_id))
        self._verificar_acesso(principal, board_id)

        board = Board.objects.get(pk=board_id)
        listas = list(board.listas.order_by('ordem', 'id'))
        cartoes = (
            Cartao.objects
            .filter(lista__board_id=board_id)
            .annotate(total_comentarios=Count('comentarios'))
            .order_by('ordem', 'id')
        )

        por_lista = {lista.pk: [] for lista in listas}
        for cartao in cartoes:
            por_lista[cartao.lista_id].append({
                'id': str(cartao.pk),
                'titulo': cartao.titulo,
                'descricao': cartao.descricao,
                'prazo': formatar_valor(cartao.prazo),
                'arquivado': cartao.arquivado,
                'orderKey': formatar_chave(cartao.ordem),
                'version': cartao.versao,
                'comments': cartao.total_comentarios,
            })

        return {
            'boardId': str(board.pk),
            'titulo': board.titulo,
            'lists': [
                {
                    'id': str(lista.pk),
                    'titulo': lista.titulo,
                    'arquivada': lista.arquivada,
                    'orderKey': formatar_chave(lista.ordem),
                    'version': lista.versao,
                    'cards': por_lista[lista.pk],
                }
                for lista in listas
            ],
        }

    def listar_atividades(self, principal, board_id, pagina=1, limite=ATIVIDADES_POR_PAGINA):
        """Feed de atividades do board, mais recentes primeiro"""
        board_id = self._board_do_container(ENTITY_LIST, self._normalizar_id(board_id))
        self._verificar_acesso(principal, board_id)

        atividades = Atividade.objects.filter(board_id=board_id).select_related('usuario')
        paginator = Paginator(atividades, limite)
        page = paginator.get_page(pagina)

        return {
            'activities': [atividade.as_wire() for atividade in page],
            'pagination': {
                'page': page.number,
                'limit': limite,
                'total': paginator.count,
                'pages': paginator.num_pages,
            },
        }

    def rebalancear_container(self, entity_type, container_id):
        """Rebalanceamento explícito (comando de manutenção)"""
        allocator = self.allocators[entity_type]
        with transaction.atomic():
            if not allocator.needs_rebalance(container_id):
                return []
            return allocator.rebalance(container_id)

    # =================== MÉTODOS PRIVADOS ===================

    def _alocar(self, allocator, container_id, calcular, rebalanceamentos):
        """
        Executa o cálculo da chave com uma única nova tentativa

        InvalidRangeError indica vizinhos velhos/empatados: relê os irmãos
        (rebalanceando antes, se o container precisar) e tenta de novo.
        A segunda falha sobe para quem chamou.
        """
        try:
            return calcular()
        except InvalidRangeError as e:
            logger.warning(f"🔁 Recalculando posição no container {container_id}: {e.message}")
            if allocator.needs_rebalance(container_id):
                self._rebalancear(allocator, container_id, rebalanceamentos)
            return calcular()

    def _rebalancear_se_necessario(self, allocator, container_id, rebalanceamentos):
        if allocator.needs_rebalance(container_id):
            self._rebalancear(allocator, container_id, rebalanceamentos)

    def _rebalancear(self, allocator, container_id, rebalanceamentos):
        """Rebalanceia e guarda as posições exatamente como ficaram neste ponto"""
        allocator.rebalance(container_id)
        posicoes = [
            {'entityId': str(pk), 'orderKey': formatar_chave(ordem), 'version': versao}
            for pk, ordem, versao in allocator.store.get_versions(container_id)
        ]
        rebalanceamentos.append((container_id, posicoes))

    def _chave_para_nova(self, allocator, container_id, target_index):
        if target_index is None:
            return allocator.allocate_initial(container_id)
        irmaos = allocator.store.get_siblings(container_id)
        lower, upper, outros = allocator.resolve_neighbors(irmaos, None, target_index)
        if not outros:
            return allocator.allocate_initial(container_id)
        return allocator.allocate_between(lower, upper)

    def _evento_criacao(self, entity_type, board_id, entidade, campos, principal):
        """Chave e versão do momento da criação (um rebalanceamento posterior vem em evento próprio)"""
        payload = {
            'containerId': str(self._container_de(entity_type, entidade)),
            'orderKey': formatar_chave(entidade.ordem),
            'version': entidade.versao,
            'fields': campos,
        }
        return SyncEvent(ENTITY_CREATED, board_id, entity_type, entidade.pk, payload, principal)

    def _com_rebalanceamentos(self, entity_type, board_id, antes, eventos, depois, principal):
        """
        Ordena os eventos como as escritas aconteceram

        Rebalanceamento feito antes da escrita precisa chegar antes dela,
        senão os pares veem uma lacuna de versão e recarregam sem motivo.
        """
        return (
            self._eventos_rebalanceamento(entity_type, board_id, antes, principal)
            + eventos
            + self._eventos_rebalanceamento(entity_type, board_id, depois, principal)
        )

    def _eventos_rebalanceamento(self, entity_type, board_id, rebalanceamentos, principal):
        return [
            SyncEvent(
                CONTAINER_REBALANCED,
                board_id,
                entity_type,
                container_id,
                {'containerId': str(container_id), 'positions': posicoes},
                principal,
            )
            for container_id, posicoes in rebalanceamentos
        ]

    @staticmethod
    def _registrar(principal, board_id, tipo, entity_type, entity_id, **dados):
        """Entrada no feed de atividades, na mesma transação da mudança"""
        Atividade.objects.create(
            board_id=board_id,
            usuario_id=principal.id,
            tipo=tipo,
            entidade_tipo=entity_type,
            entidade_id=str(entity_id),
            dados=dados,
        )

    def _verificar_acesso(self, principal, board_id):
        if not self.has_board_access(principal, board_id):
            logger.warning(f"🚫 {principal.display_name} sem acesso ao board {board_id}")
            raise AuthorizationError("Sem acesso ao board", boardId=str(board_id))

    @staticmethod
    def _normalizar_id(valor):
        try:
            return int(valor)
        except (TypeError, ValueError):
            raise EntidadeNaoEncontrada(f"Identificador inválido: {valor}")

    @staticmethod
    def _container_de(entity_type, entidade):
        return entidade.board_id if entity_type == ENTITY_LIST else entidade.lista_id

    @staticmethod
    def _board_do_container(entity_type, container_id):
        """Board ao qual o container pertence (o próprio board, para listas)"""
        if entity_type == ENTITY_LIST:
            if not Board.objects.filter(pk=container_id, ativo=True).exists():
                raise EntidadeNaoEncontrada(f"Board {container_id} não encontrado")
            return container_id

        board_id = Lista.objects.filter(pk=container_id).values_list('board_id', flat=True).first()
        if board_id is None:
            raise EntidadeNaoEncontrada(f"Lista {container_id} não encontrada")
        return board_id


class IntentHandler:
    """
    Adaptador assíncrono: mensagem de intenção do WebSocket -> serviço

    Chamado pelo broker dentro de handle(); devolve os eventos a retransmitir.
    """

    def __init__(self, service):
        self.service = service

    async def __call__(self, principal: Principal, message):
        return await database_sync_to_async(self.executar)(principal, message)

    def executar(self, principal, message):
        action = message.get('action')

        if action == 'move':
            dados = board_forms.validar(board_forms.MoverForm, message)
            return self.service.mover(
                principal,
                dados['entityType'],
                dados['entityId'],
                dados['toContainerId'] or None,
                dados['targetIndex'],
            )

        elif action == 'create':
            dados = board_forms.validar(board_forms.CriarForm, message)
            if dados['entityType'] == ENTITY_LIST:
                return self.service.criar_lista(
                    principal, dados['containerId'], dados['titulo'], dados['targetIndex']
                )
            return self.service.criar_cartao(
                principal,
                dados['containerId'],
                dados['titulo'],
                dados['descricao'],
                dados['targetIndex'],
            )

        elif action == 'update':
            entity_type = message.get('entityType', ENTITY_CARD)
            if entity_type not in board_forms.CAMPOS_FORMS:
                raise DadosInvalidos("Tipo de entidade inválido")
            return self.service.atualizar(
                principal, entity_type, message.get('entityId'), message.get('fields')
            )

        elif action == 'delete':
            dados = board_forms.validar(board_forms.ExcluirForm, message)
            return self.service.excluir(principal, dados['entityType'], dados['entityId'])

        elif action == 'comment':
            dados = board_forms.validar(board_forms.ComentarioForm, message)
            return self.service.adicionar_comentario(principal, dados['entityId'], dados['texto'])

        raise DadosInvalidos(f"Ação desconhecida: {action}")
