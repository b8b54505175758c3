# apps/core/permissions.py

from functools import wraps

from django.db.models import Q
from django.http import JsonResponse


class PermissoesBoard:
    """
    Sistema de permissões do Fluxo Kanban

    Regra única de leitura/escrita: dono do board OU membro.
    """

    @staticmethod
    def principal_tem_acesso(principal, board_id):
        """
        hasBoardAccess(principal, boardId)

        Consultado a cada join (nunca em cache): acesso revogado vale
        a partir da próxima tentativa.
        """
        from .models import Board

        if principal is None:
            return False

        try:
            return Board.objects.filter(
                Q(dono_id=principal.id) | Q(membros__id=principal.id),
                id=board_id,
                ativo=True
            ).exists()
        except (ValueError, TypeError):
            # board_id que nem é um id válido
            return False


# Decoradores para views JSON

def requer_token(view_func):
    """
    Decorador que requer principal autenticado por JWT

    O JWTAuthenticationMiddleware preenche request.principal.
    Retorna 401 ao invés de redirecionar.
    """

    @wraps(view_func)
    def wrapped_view(request, *args, **kwargs):
        if getattr(request, 'principal', None) is None:
            erro = getattr(request, 'auth_error', None) or 'Credencial ausente'
            return JsonResponse({'success': False, 'error': erro}, status=401)
        return view_func(request, *args, **kwargs)

    return wrapped_view
