# apps/board/views.py

"""
Endpoints JSON do board

Fluxo de toda escrita: serviço persiste e devolve eventos -> view
retransmite pelo broker -> resposta ao cliente. A conexão informada em
X-Connection-Id não recebe a retransmissão (ela já aplicou localmente).
"""

import json
import logging
from functools import wraps

from asgiref.sync import async_to_sync
from django.apps import apps
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.exceptions import DadosInvalidos, FluxoError
from apps.core.permissions import requer_token
from . import forms as board_forms
from .events import ENTITY_CARD, ENTITY_LIST
from .services import ATIVIDADES_POR_PAGINA

logger = logging.getLogger(__name__)


# === Utilitários ===

def api_view(view_func):
    """
    Traduz exceções de domínio em JsonResponse

    Erros vão só para quem fez a requisição; nada é retransmitido.
    """

    @wraps(view_func)
    def wrapped_view(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except FluxoError as e:
            logger.info(f"↩️ {request.method} {request.path}: {e.code} - {e.message}")
            return JsonResponse(
                {'success': False, 'error': e.message, 'code': e.code, **e.details},
                status=e.status
            )

    return wrapped_view


def ler_json(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise DadosInvalidos("JSON inválido")
    if not isinstance(data, dict):
        raise DadosInvalidos("Corpo deve ser um objeto JSON")
    return data


def get_service():
    return apps.get_app_config('board').service


def retransmitir(request, eventos):
    """
    Relay depois da persistência; a conexão de origem fica de fora

    X-Connection-Id só vale para uma conexão do mesmo principal da
    requisição. Caso contrário o header é ignorado e todos recebem.
    """
    if not eventos:
        return 0
    broker = apps.get_app_config('board').broker
    origem = broker.connection_by_id(getattr(request, 'connection_id', None))
    if origem is not None:
        dono = broker.principal_of(origem)
        if dono is None or str(dono.id) != str(request.principal.id):
            logger.warning(
                f"⚠️ X-Connection-Id de outro principal ignorado ({request.principal.display_name})"
            )
            origem = None
    return async_to_sync(broker.relay_all)(origem, eventos)


def responder_eventos(request, eventos, status=200, **extra):
    retransmitir(request, eventos)
    return JsonResponse({
        'success': True,
        'events': [evento.to_wire() for evento in eventos],
        **extra
    }, status=status)


# === Leitura ===

@require_GET
@requer_token
@api_view
def listar_boards(request):
    """Boards em que o principal é dono ou membro"""
    from apps.core.models import Usuario

    usuario = Usuario.objects.get(pk=request.principal.id)
    boards = usuario.get_boards_acessiveis().order_by('titulo')

    return JsonResponse({
        'success': True,
        'boards': [
            {'id': str(board.pk), 'titulo': board.titulo, 'descricao': board.descricao}
            for board in boards
        ]
    })


@require_GET
@requer_token
@api_view
def board_snapshot(request, board_id):
    """Estado completo do board - carga inicial e ressincronização"""
    snapshot = get_service().snapshot_board(request.principal, board_id)
    return JsonResponse({'success': True, 'board': snapshot})


# === Criação ===

@csrf_exempt
@require_POST
@requer_token
@api_view
def criar_lista(request, board_id):
    data = ler_json(request)
    dados = board_forms.validar(board_forms.CriarForm, {
        **data,
        'entityType': ENTITY_LIST,
        'containerId': board_id,
    })

    eventos = get_service().criar_lista(
        request.principal, board_id, dados['titulo'], dados['targetIndex']
    )
    return responder_eventos(request, eventos, status=201, id=eventos[0].entity_id)


@csrf_exempt
@require_POST
@requer_token
@api_view
def criar_cartao(request, lista_id):
    data = ler_json(request)
    dados = board_forms.validar(board_forms.CriarForm, {
        **data,
        'entityType': ENTITY_CARD,
        'containerId': lista_id,
    })

    eventos = get_service().criar_cartao(
        request.principal, lista_id, dados['titulo'], dados['descricao'], dados['targetIndex']
    )
    return responder_eventos(request, eventos, status=201, id=eventos[0].entity_id)


# === Movimentação ===

@csrf_exempt
@require_POST
@requer_token
@api_view
def mover_lista(request, lista_id):
    """Reordena a lista dentro do próprio board"""
    data = ler_json(request)
    dados = board_forms.validar(board_forms.MoverForm, {
        'entityType': ENTITY_LIST,
        'entityId': lista_id,
        'targetIndex': data.get('targetIndex'),
    })

    eventos = get_service().mover(
        request.principal, ENTITY_LIST, lista_id, None, dados['targetIndex']
    )
    return responder_eventos(request, eventos, noop=not eventos)


@csrf_exempt
@require_POST
@requer_token
@api_view
def mover_cartao(request, cartao_id):
    """Drag-and-drop de cartão, na mesma lista ou para outra"""
    data = ler_json(request)
    dados = board_forms.validar(board_forms.MoverForm, {
        **data,
        'entityType': ENTITY_CARD,
        'entityId': cartao_id,
    })

    eventos = get_service().mover(
        request.principal, ENTITY_CARD, cartao_id, dados['toContainerId'], dados['targetIndex']
    )
    return responder_eventos(request, eventos, noop=not eventos)


# === Atualização e exclusão ===

def _atualizar_ou_excluir(request, entity_type, entity_id):
    if request.method == 'DELETE':
        eventos = get_service().excluir(request.principal, entity_type, entity_id)
    else:
        eventos = get_service().atualizar(request.principal, entity_type, entity_id, ler_json(request))
    return responder_eventos(request, eventos)


@csrf_exempt
@require_http_methods(["PATCH", "DELETE"])
@requer_token
@api_view
def lista_detalhe(request, lista_id):
    """PATCH atualiza campos; DELETE exclui a lista e seus cartões"""
    return _atualizar_ou_excluir(request, ENTITY_LIST, lista_id)


@csrf_exempt
@require_http_methods(["PATCH", "DELETE"])
@requer_token
@api_view
def cartao_detalhe(request, cartao_id):
    return _atualizar_ou_excluir(request, ENTITY_CARD, cartao_id)


@csrf_exempt
@require_POST
@requer_token
@api_view
def adicionar_comentario(request, cartao_id):
    data = ler_json(request)
    dados = board_forms.validar(board_forms.ComentarioForm, {
        'entityId': cartao_id,
        'texto': data.get('texto'),
    })

    eventos = get_service().adicionar_comentario(request.principal, cartao_id, dados['texto'])
    return responder_eventos(request, eventos, status=201)


# === Atividades ===

@require_GET
@requer_token
@api_view
def listar_atividades(request, board_id):
    """Feed paginado de atividades (?page=&limit=)"""
    dados = board_forms.validar(board_forms.PaginacaoForm, request.GET)
    feed = get_service().listar_atividades(
        request.principal,
        board_id,
        pagina=dados['page'] or 1,
        limite=dados['limit'] or ATIVIDADES_POR_PAGINA,
    )
    return JsonResponse({'success': True, **feed})
