"""
Testes dos comandos de manutenção
"""

from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.core.models import Board, Cartao, Lista, Usuario

pytestmark = pytest.mark.django_db


def executar(*args, **kwargs):
    saida = StringIO()
    call_command(*args, stdout=saida, **kwargs)
    return saida.getvalue()


class TestRebalancearPosicoes:

    @pytest.fixture
    def apertados(self, listas, criar_cartao):
        lista = listas[0]
        return lista, [
            criar_cartao(lista, 'A', '1000'),
            criar_cartao(lista, 'B', '1000.000000001'),
        ]

    def test_dry_run_writes_nothing(self, board, apertados):
        _lista, (a, b) = apertados

        saida = executar('rebalancear_posicoes', '--dry-run', '--board', str(board.pk))

        assert '1 container(s) precisam' in saida
        b.refresh_from_db()
        assert b.ordem == Decimal('1000.000000001')

    def test_rebalance_respaces_keys_in_order(self, board, apertados):
        lista, (a, b) = apertados

        saida = executar('rebalancear_posicoes', '--board', str(board.pk))

        assert '1 container(s) rebalanceado(s)' in saida
        chaves = list(
            Cartao.objects.filter(lista=lista).order_by('ordem').values_list('titulo', 'ordem')
        )
        assert chaves == [('A', Decimal('1000')), ('B', Decimal('2000'))]

        b.refresh_from_db()
        assert b.versao == 2

    def test_healthy_board_is_untouched(self, board, listas, criar_cartao):
        criar_cartao(listas[0], 'A', '1000')
        criar_cartao(listas[0], 'B', '2000')

        saida = executar('rebalancear_posicoes')

        assert '0 container(s) rebalanceado(s)' in saida

    def test_unknown_board(self, db):
        with pytest.raises(CommandError):
            executar('rebalancear_posicoes', '--board', '999')


class TestSeed:

    def test_creates_demo_board(self):
        executar('seed', '--senha', 'demo-456')

        board = Board.objects.get(titulo='Board Demo')
        assert board.dono.username == 'ana'
        assert list(board.membros.values_list('username', flat=True)) == ['bruno']
        assert Lista.objects.filter(board=board).count() == 3
        assert Cartao.objects.filter(lista__board=board).count() == 6
        assert Usuario.objects.get(username='bruno').check_password('demo-456')

    def test_is_idempotent(self):
        executar('seed')
        saida = executar('seed')

        assert 'já existe' in saida
        assert Board.objects.filter(titulo='Board Demo').count() == 1
