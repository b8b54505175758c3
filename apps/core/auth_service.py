# apps/core/auth_service.py

"""
Serviço de Autenticação - emissão e verificação de tokens JWT

Encapsula toda a lógica de credenciais usada pela API HTTP e pelas
conexões WebSocket. A verificação acontece uma única vez por conexão:
o token é validado e o usuário referenciado precisa ainda existir.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

import jwt
from django.conf import settings
from django.contrib.auth import authenticate
from django.utils import timezone
from jwt.exceptions import InvalidTokenError

from .exceptions import AuthError
from .models import Usuario

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Identidade autenticada que age sobre o board"""

    id: str
    display_name: str

    def as_wire(self):
        return {'id': self.id, 'displayName': self.display_name}

    @classmethod
    def from_usuario(cls, usuario):
        return cls(id=str(usuario.pk), display_name=usuario.nome_exibicao)


class AuthenticationService:
    """
    Serviço encapsulado para gerenciar autenticação por token

    As configurações são lidas do settings a cada uso, para respeitar
    override_settings nos testes.
    """

    @property
    def _secret(self):
        return settings.JWT_SECRET

    @property
    def _algorithm(self):
        return getattr(settings, 'JWT_ALGORITHM', 'HS256')

    @property
    def _expiracao(self):
        return timedelta(hours=getattr(settings, 'JWT_EXPIRES_HOURS', 24 * 7))

    def fazer_login(self, username: str, password: str) -> Tuple[bool, str, Optional[str]]:
        """
        Autentica por username/senha e emite um token

        Returns:
            Tuple[sucesso, mensagem, token]
        """
        usuario = authenticate(username=username, password=password)

        if usuario is None or not usuario.is_active:
            logger.warning(f"⚠️ Tentativa de login falhada para: {username}")
            return False, "Credenciais inválidas", None

        return True, f"Bem-vindo, {usuario.nome_exibicao}!", self.emitir_token(usuario)

    def emitir_token(self, usuario: Usuario, expira_em: Optional[timedelta] = None) -> str:
        """Emite JWT com sub = id do usuário"""
        agora = timezone.now()
        payload = {
            'sub': str(usuario.pk),
            'name': usuario.nome_exibicao,
            'iat': agora,
            'exp': agora + (expira_em if expira_em is not None else self._expiracao),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decodificar_token(self, token) -> dict:
        """
        Valida assinatura e expiração

        Raises:
            AuthError: token ausente, malformado ou expirado
        """
        if not token or not isinstance(token, str):
            raise AuthError("Credencial ausente")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={'require': ['sub', 'exp']},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthError("Credencial expirada") from e
        except InvalidTokenError as e:
            logger.warning(f"⚠️ Token JWT inválido: {e}")
            raise AuthError("Credencial inválida") from e

        return payload

    def obter_principal(self, token) -> Principal:
        """
        verifyCredential: token válido + usuário ainda existente e ativo

        Raises:
            AuthError
        """
        payload = self.decodificar_token(token)

        try:
            usuario = Usuario.objects.get(pk=payload['sub'], is_active=True)
        except (Usuario.DoesNotExist, ValueError):
            raise AuthError("Usuário da credencial não existe mais")

        return Principal.from_usuario(usuario)


def extrair_token_bearer(valor: Optional[str]) -> Optional[str]:
    """'Bearer <token>' -> '<token>'"""
    if not valor:
        return None
    partes = valor.split()
    if len(partes) == 2 and partes[0].lower() == 'bearer':
        return partes[1]
    return None


# Instância do serviço (sem estado próprio - só lê settings)
auth_service = AuthenticationService()
