# apps/core/views.py

import json
import logging

from django.core.cache import cache
from django.db import DatabaseError
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .auth_service import auth_service  # Importando nosso serviço encapsulado
from .forms import LoginForm
from .models import Usuario
from .permissions import requer_token

logger = logging.getLogger(__name__)

VERSAO = '0.1.0'


@csrf_exempt
@require_POST
def obter_token(request):
    """
    Emissão de token usando serviço encapsulado

    Aceita JSON ou form-encoded. O encapsulamento aqui separa a lógica HTTP
    (view) da lógica de autenticação (service).
    """
    if request.content_type == 'application/json':
        try:
            data = json.loads(request.body or b'{}')
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JsonResponse({'success': False, 'error': 'JSON inválido'}, status=400)
    else:
        data = request.POST

    form = LoginForm(data)
    if not form.is_valid():
        return JsonResponse({
            'success': False,
            'error': 'Usuário e senha são obrigatórios',
            'fields': form.errors.get_json_data()
        }, status=400)

    sucesso, mensagem, token = auth_service.fazer_login(
        form.cleaned_data['username'],
        form.cleaned_data['password']
    )

    if not sucesso:
        return JsonResponse({'success': False, 'error': mensagem}, status=401)

    return JsonResponse({
        'success': True,
        'message': mensagem,
        'token': token,
        'tokenType': 'Bearer',
    })


@require_GET
@requer_token
def quem_sou_eu(request):
    """Principal resolvido a partir do token"""
    return JsonResponse({'success': True, 'principal': request.principal.as_wire()})


@require_GET
def health_check(request):
    """
    Health check para monitoramento
    """
    try:
        # Verificar conexão com banco
        Usuario.objects.exists()

        # Verificar cache (Redis em produção)
        cache.set('health_check', 'ok', 60)
        cache_ok = cache.get('health_check') == 'ok'

        status = {
            'status': 'healthy' if cache_ok else 'degraded',
            'database': 'ok',
            'cache': 'ok' if cache_ok else 'falhou',
            'timestamp': timezone.now().isoformat(),
            'version': VERSAO
        }

        return JsonResponse(status)

    except DatabaseError as e:
        logger.error(f"❌ Health check falhou: {e}")
        status = {
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': timezone.now().isoformat(),
            'version': VERSAO
        }

        return JsonResponse(status, status=500)
