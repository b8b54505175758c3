# apps/core/middleware.py

from .auth_service import auth_service, extrair_token_bearer
from .exceptions import AuthError


class JWTAuthenticationMiddleware:
    """
    Middleware que resolve o principal a partir do header Authorization

    Não bloqueia nada sozinho: apenas preenche request.principal (ou None)
    e request.auth_error. Quem exige autenticação é o decorador requer_token.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.principal = None
        request.auth_error = None

        token = extrair_token_bearer(request.META.get('HTTP_AUTHORIZATION'))
        if token:
            try:
                request.principal = auth_service.obter_principal(token)
            except AuthError as e:
                request.auth_error = e.message

        # Conexão WebSocket que originou a ação (excluída da retransmissão)
        request.connection_id = request.META.get('HTTP_X_CONNECTION_ID') or None

        response = self.get_response(request)

        if request.principal is not None:
            response['X-Principal'] = request.principal.id

        return response
