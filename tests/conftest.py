"""
Fixtures compartilhadas dos testes do Fluxo Kanban
"""

from decimal import Decimal

import pytest
from django.test import Client

from apps.core.auth_service import Principal, auth_service
from apps.core.models import Board, Cartao, Usuario
from tests.fakes import FakeConnection


@pytest.fixture
def fake_connection_factory():
    def criar(connection_id, falhar=False):
        return FakeConnection(connection_id, falhar=falhar)
    return criar


@pytest.fixture
def usuario(db):
    return Usuario.objects.create_user(
        username='ana',
        password='senha-forte-123',
        first_name='Ana',
        last_name='Souza'
    )


@pytest.fixture
def membro(db):
    return Usuario.objects.create_user(username='bruno', password='senha-forte-123')


@pytest.fixture
def estranho(db):
    return Usuario.objects.create_user(username='carla', password='senha-forte-123')


@pytest.fixture
def board(usuario, membro):
    board = Board.objects.create(titulo='Sprint 1', dono=usuario)
    board.membros.add(membro)
    board.criar_listas_padrao()
    return board


@pytest.fixture
def listas(board):
    return list(board.listas.order_by('ordem'))


@pytest.fixture
def criar_cartao(usuario):
    def criar(lista, titulo, ordem):
        return Cartao.objects.create(
            titulo=titulo,
            lista=lista,
            ordem=Decimal(str(ordem)),
            criado_por=usuario
        )
    return criar


@pytest.fixture
def principal(usuario):
    return Principal.from_usuario(usuario)


@pytest.fixture
def principal_membro(membro):
    return Principal.from_usuario(membro)


@pytest.fixture
def principal_estranho(estranho):
    return Principal.from_usuario(estranho)


@pytest.fixture
def token(usuario):
    return auth_service.emitir_token(usuario)


@pytest.fixture
def api(token):
    """Client HTTP autenticado por Bearer"""
    return Client(HTTP_AUTHORIZATION=f'Bearer {token}')


@pytest.fixture
def api_estranho(estranho):
    return Client(HTTP_AUTHORIZATION=f'Bearer {auth_service.emitir_token(estranho)}')
