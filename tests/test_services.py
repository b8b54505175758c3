"""
Testes do serviço de sincronização (intenções contra o banco)
"""

from decimal import Decimal

import pytest
from django.db import OperationalError

from apps.board.events import (
    COMMENT_ADDED,
    CONTAINER_REBALANCED,
    ENTITY_CARD,
    ENTITY_CREATED,
    ENTITY_DELETED,
    ENTITY_LIST,
    ENTITY_MOVED,
    ENTITY_UPDATED,
)
from apps.board.services import BoardSyncService, IntentHandler
from apps.board.sync_client import APLICADO, BoardReplica
from apps.core.exceptions import (
    AuthorizationError,
    DadosInvalidos,
    EntidadeNaoEncontrada,
    PersistenceFailure,
)
from apps.core.models import Atividade, Board, Cartao, Comentario, Lista

pytestmark = pytest.mark.django_db


@pytest.fixture
def service():
    return BoardSyncService()


def ordem_da_lista(lista):
    return list(Cartao.objects.filter(lista=lista).order_by('ordem', 'id').values_list('titulo', flat=True))


class TestMover:

    def test_move_to_head_rewrites_only_the_moved_card(self, service, principal, listas, criar_cartao):
        lista = listas[0]
        a = criar_cartao(lista, 'A', 1000)
        c = criar_cartao(lista, 'C', 2000)

        eventos = service.mover(principal, ENTITY_CARD, c.pk, lista.pk, 0)

        a.refresh_from_db()
        c.refresh_from_db()
        assert c.ordem == Decimal('500')
        assert a.ordem == Decimal('1000')
        assert a.versao == 1
        assert c.versao == 2
        assert ordem_da_lista(lista) == ['C', 'A']

        assert len(eventos) == 1
        evento = eventos[0]
        assert evento.event_type == ENTITY_MOVED
        assert evento.board_id == str(lista.board_id)
        assert evento.entity_id == str(c.pk)
        assert Decimal(evento.payload['orderKey']) == Decimal('500')
        assert evento.payload['containerId'] == str(lista.pk)
        assert evento.payload['version'] == 2
        assert evento.acting_principal == principal

    def test_move_between_lists(self, service, principal, listas, criar_cartao):
        origem, destino = listas[0], listas[1]
        cartao = criar_cartao(origem, 'Tarefa', 1000)
        criar_cartao(destino, 'X', 1000)
        criar_cartao(destino, 'Y', 2000)

        eventos = service.mover(principal, ENTITY_CARD, cartao.pk, destino.pk, 1)

        cartao.refresh_from_db()
        assert cartao.lista_id == destino.pk
        assert cartao.ordem == Decimal('1500')
        assert ordem_da_lista(destino) == ['X', 'Tarefa', 'Y']
        assert eventos[0].payload['fromContainerId'] == str(origem.pk)

    def test_noop_move_issues_no_write(self, service, principal, listas, criar_cartao):
        lista = listas[0]
        a = criar_cartao(lista, 'A', 1000)
        criar_cartao(lista, 'B', 2000)

        assert service.mover(principal, ENTITY_CARD, a.pk, lista.pk, 0) == []

        a.refresh_from_db()
        assert a.versao == 1
        assert a.ordem == Decimal('1000')

    def test_member_can_move(self, service, principal_membro, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)
        eventos = service.mover(principal_membro, ENTITY_CARD, cartao.pk, listas[2].pk, 0)
        assert eventos[0].payload['containerId'] == str(listas[2].pk)

    def test_stranger_cannot_move(self, service, principal_estranho, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)

        with pytest.raises(AuthorizationError):
            service.mover(principal_estranho, ENTITY_CARD, cartao.pk, listas[1].pk, 0)

        cartao.refresh_from_db()
        assert cartao.lista_id == listas[0].pk

    def test_unknown_card(self, service, principal, listas):
        with pytest.raises(EntidadeNaoEncontrada):
            service.mover(principal, ENTITY_CARD, 987654, listas[0].pk, 0)

    def test_unknown_target_list(self, service, principal, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)
        with pytest.raises(EntidadeNaoEncontrada):
            service.mover(principal, ENTITY_CARD, cartao.pk, 987654, 0)

    def test_reorder_lists(self, service, principal, board, listas):
        eventos = service.mover(principal, ENTITY_LIST, listas[2].pk, None, 0)

        titulos = list(board.listas.order_by('ordem').values_list('titulo', flat=True))
        assert titulos == ['Concluído', 'A Fazer', 'Em Progresso']
        assert eventos[0].entity_type == ENTITY_LIST
        assert eventos[0].payload['containerId'] == str(board.pk)

    def test_list_cannot_change_board(self, service, principal, usuario, listas):
        outro = Board.objects.create(titulo='Outro', dono=usuario)

        with pytest.raises(DadosInvalidos):
            service.mover(principal, ENTITY_LIST, listas[0].pk, outro.pk, 0)

    def test_cross_board_move_emits_one_event_per_board(self, service, principal, usuario, board, listas, criar_cartao):
        outro = Board.objects.create(titulo='Outro', dono=usuario)
        lista_destino = Lista.objects.create(titulo='Entrada', board=outro, ordem=Decimal('1000'))
        cartao = criar_cartao(listas[0], 'A', 1000)

        eventos = service.mover(principal, ENTITY_CARD, cartao.pk, lista_destino.pk, 0)

        assert {e.board_id for e in eventos} == {str(board.pk), str(outro.pk)}
        assert all(e.event_type == ENTITY_MOVED for e in eventos)

    def test_cross_board_move_needs_access_to_both(self, service, principal_membro, estranho, listas, criar_cartao):
        alheio = Board.objects.create(titulo='Alheio', dono=estranho)
        lista_alheia = Lista.objects.create(titulo='Entrada', board=alheio, ordem=Decimal('1000'))
        cartao = criar_cartao(listas[0], 'A', 1000)

        with pytest.raises(AuthorizationError):
            service.mover(principal_membro, ENTITY_CARD, cartao.pk, lista_alheia.pk, 0)

    def test_exhausted_gap_rebalances_and_retries(self, service, principal, board, listas, criar_cartao):
        lista = listas[0]
        a = criar_cartao(lista, 'A', '1000')
        b = criar_cartao(lista, 'B', '1000.000000001')
        c = criar_cartao(lista, 'C', '2000')
        replica = BoardReplica(board.pk, lambda board_id: service.snapshot_board(principal, board_id))
        replica.reload()

        eventos = service.mover(principal, ENTITY_CARD, c.pk, lista.pk, 1)

        assert ordem_da_lista(lista) == ['A', 'C', 'B']
        keys = list(Cartao.objects.filter(lista=lista).order_by('ordem').values_list('ordem', flat=True))
        assert keys == [Decimal('1000'), Decimal('1500'), Decimal('2000')]

        # O rebalanceamento aconteceu antes da escrita e chega antes dela
        tipos = [e.event_type for e in eventos]
        assert tipos == [CONTAINER_REBALANCED, ENTITY_MOVED]

        rebalanceamento = eventos[0]
        assert rebalanceamento.entity_id == str(lista.pk)
        posicoes = rebalanceamento.payload['positions']
        assert [p['entityId'] for p in posicoes] == [str(a.pk), str(b.pk), str(c.pk)]
        assert [p['version'] for p in posicoes] == [2, 2, 2]
        assert Decimal(posicoes[2]['orderKey']) == Decimal('3000')
        assert eventos[1].payload['version'] == 3

        for evento in eventos:
            assert replica.apply_event(evento.to_wire()) == APLICADO
        assert replica.reloads == 1
        assert replica.ordered_cards(str(lista.pk)) == [str(a.pk), str(c.pk), str(b.pk)]

    def test_persistence_failure_produces_no_events(self, service, principal, listas, criar_cartao, monkeypatch):
        cartao = criar_cartao(listas[0], 'A', 1000)

        def falha(*args, **kwargs):
            raise PersistenceFailure("banco indisponível")

        monkeypatch.setattr(service.stores[ENTITY_CARD], 'write_entity_position', falha)

        with pytest.raises(PersistenceFailure):
            service.mover(principal, ENTITY_CARD, cartao.pk, listas[1].pk, 0)


class TestCriar:

    def test_card_is_appended(self, service, principal, listas, criar_cartao):
        lista = listas[0]
        criar_cartao(lista, 'A', 1000)

        eventos = service.criar_cartao(principal, lista.pk, 'Nova', 'detalhes')

        nova = Cartao.objects.get(titulo='Nova')
        assert nova.ordem == Decimal('2000')
        assert nova.criado_por_id == int(principal.id)
        assert eventos[0].event_type == ENTITY_CREATED
        assert eventos[0].payload['fields'] == {'titulo': 'Nova', 'descricao': 'detalhes'}
        assert eventos[0].payload['version'] == 1

    def test_card_at_index(self, service, principal, listas, criar_cartao):
        lista = listas[0]
        criar_cartao(lista, 'A', 1000)
        criar_cartao(lista, 'B', 2000)

        service.criar_cartao(principal, lista.pk, 'Meio', target_index=1)

        assert ordem_da_lista(lista) == ['A', 'Meio', 'B']

    def test_first_card_gets_step(self, service, principal, listas):
        service.criar_cartao(principal, listas[1].pk, 'Primeiro', target_index=0)
        assert Cartao.objects.get(titulo='Primeiro').ordem == Decimal('1000')

    def test_list_is_appended_to_board(self, service, principal, board, listas):
        eventos = service.criar_lista(principal, board.pk, 'Revisão')

        lista = Lista.objects.get(titulo='Revisão')
        assert lista.ordem == Decimal('4000')
        assert eventos[0].entity_type == ENTITY_LIST
        assert eventos[0].payload['containerId'] == str(board.pk)

    def test_stranger_cannot_create(self, service, principal_estranho, listas):
        with pytest.raises(AuthorizationError):
            service.criar_cartao(principal_estranho, listas[0].pk, 'Invasão')
        assert not Cartao.objects.filter(titulo='Invasão').exists()


class TestAtualizar:

    def test_only_changed_fields_are_relayed(self, service, principal, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)

        eventos = service.atualizar(principal, ENTITY_CARD, cartao.pk, {'titulo': 'A', 'descricao': 'novo texto'})

        cartao.refresh_from_db()
        assert cartao.descricao == 'novo texto'
        assert cartao.versao == 2
        assert eventos[0].event_type == ENTITY_UPDATED
        assert eventos[0].payload == {'fields': {'descricao': 'novo texto'}, 'version': 2}

    def test_unchanged_update_is_silent(self, service, principal, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)
        assert service.atualizar(principal, ENTITY_CARD, cartao.pk, {'titulo': 'A'}) == []

    def test_date_field_is_serialized(self, service, principal, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)
        eventos = service.atualizar(principal, ENTITY_CARD, cartao.pk, {'prazo': '2026-12-01'})
        assert eventos[0].payload['fields'] == {'prazo': '2026-12-01'}

    def test_unknown_field_is_rejected(self, service, principal, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)
        with pytest.raises(DadosInvalidos):
            service.atualizar(principal, ENTITY_CARD, cartao.pk, {'ordem': '1'})

    def test_empty_title_is_rejected(self, service, principal, listas):
        with pytest.raises(DadosInvalidos):
            service.atualizar(principal, ENTITY_LIST, listas[0].pk, {'titulo': ''})

    def test_rename_list(self, service, principal, listas):
        eventos = service.atualizar(principal, ENTITY_LIST, listas[0].pk, {'titulo': 'Backlog'})
        assert eventos[0].payload['fields'] == {'titulo': 'Backlog'}

    def test_concurrent_move_keeps_its_version_bump(self, service, principal, listas, criar_cartao, monkeypatch):
        lista = listas[0]
        cartao = criar_cartao(lista, 'A', 1000)
        store = service.stores[ENTITY_CARD]
        ler = store.get_entity_by_id

        def ler_e_mover(entity_id):
            entidade = ler(entity_id)
            # Outro cliente move o cartão entre a leitura e a escrita
            store.write_entity_position(entidade.pk, lista.pk, Decimal('1500'))
            return entidade

        monkeypatch.setattr(store, 'get_entity_by_id', ler_e_mover)

        eventos = service.atualizar(principal, ENTITY_CARD, cartao.pk, {'descricao': 'texto'})

        cartao.refresh_from_db()
        assert cartao.versao == 3
        assert cartao.ordem == Decimal('1500')
        assert cartao.descricao == 'texto'
        assert eventos[0].payload['version'] == 3

    def test_database_error_becomes_persistence_failure(self, service, principal, listas, criar_cartao, monkeypatch):
        cartao = criar_cartao(listas[0], 'A', 1000)

        def falha(*args, **kwargs):
            raise OperationalError("database is locked")

        monkeypatch.setattr(service.stores[ENTITY_CARD], 'write_fields', falha)

        with pytest.raises(PersistenceFailure):
            service.atualizar(principal, ENTITY_CARD, cartao.pk, {'titulo': 'B'})

        cartao.refresh_from_db()
        assert cartao.titulo == 'A'
        assert not Atividade.objects.exists()


class TestComentario:

    def test_comment_added(self, service, principal_membro, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)

        eventos = service.adicionar_comentario(principal_membro, cartao.pk, '  Pronto para revisão ')

        comentario = Comentario.objects.get()
        assert comentario.texto == 'Pronto para revisão'
        assert eventos[0].event_type == COMMENT_ADDED
        assert eventos[0].payload['fields']['commentId'] == str(comentario.pk)

    def test_blank_comment_is_rejected(self, service, principal, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)
        with pytest.raises(DadosInvalidos):
            service.adicionar_comentario(principal, cartao.pk, '   ')


class TestSnapshot:

    def test_snapshot_is_ordered(self, service, principal, board, listas, criar_cartao):
        criar_cartao(listas[0], 'Segundo', 2000)
        primeiro = criar_cartao(listas[0], 'Primeiro', 1000)
        service.adicionar_comentario(principal, primeiro.pk, 'oi')

        snapshot = service.snapshot_board(principal, board.pk)

        assert snapshot['boardId'] == str(board.pk)
        assert [lista['titulo'] for lista in snapshot['lists']] == ['A Fazer', 'Em Progresso', 'Concluído']
        cards = snapshot['lists'][0]['cards']
        assert [c['titulo'] for c in cards] == ['Primeiro', 'Segundo']
        assert cards[0]['comments'] == 1
        assert Decimal(cards[0]['orderKey']) == Decimal('1000')

    def test_stranger_cannot_read(self, service, principal_estranho, board):
        with pytest.raises(AuthorizationError):
            service.snapshot_board(principal_estranho, board.pk)

    def test_inactive_board_is_not_found(self, service, principal, board):
        Board.objects.filter(pk=board.pk).update(ativo=False)
        with pytest.raises(EntidadeNaoEncontrada):
            service.snapshot_board(principal, board.pk)


def test_rebalance_container_is_a_noop_when_spacing_is_fine(service, listas, criar_cartao):
    criar_cartao(listas[0], 'A', 1000)
    criar_cartao(listas[0], 'B', 2000)
    assert service.rebalancear_container(ENTITY_CARD, listas[0].pk) == []


class TestFalhaDePersistencia:

    def test_card_create_error_is_translated(self, service, principal, listas, monkeypatch):
        def falha(*args, **kwargs):
            raise OperationalError("disk I/O error")

        monkeypatch.setattr(Cartao.objects, 'create', falha)

        with pytest.raises(PersistenceFailure) as excinfo:
            service.criar_cartao(principal, listas[0].pk, 'Nova')

        assert excinfo.value.details == {'listaId': str(listas[0].pk)}
        assert isinstance(excinfo.value.__cause__, OperationalError)
        assert not Atividade.objects.exists()

    def test_comment_error_rolls_back(self, service, principal, listas, criar_cartao, monkeypatch):
        cartao = criar_cartao(listas[0], 'A', 1000)

        def falha(*args, **kwargs):
            raise OperationalError("database is locked")

        monkeypatch.setattr(Comentario.objects, 'create', falha)

        with pytest.raises(PersistenceFailure):
            service.adicionar_comentario(principal, cartao.pk, 'oi')
        assert not Comentario.objects.exists()


class TestExcluir:

    def test_delete_card_leaves_siblings_untouched(self, service, principal, listas, criar_cartao):
        lista = listas[0]
        a = criar_cartao(lista, 'A', '1000')
        b = criar_cartao(lista, 'B', '1000.000000001')
        c = criar_cartao(lista, 'C', '2000')

        eventos = service.excluir(principal, ENTITY_CARD, b.pk)

        assert not Cartao.objects.filter(pk=b.pk).exists()
        restantes = list(Cartao.objects.filter(lista=lista).order_by('ordem').values_list('id', 'ordem', 'versao'))
        assert restantes == [(a.pk, Decimal('1000'), 1), (c.pk, Decimal('2000'), 1)]

        assert len(eventos) == 1
        evento = eventos[0]
        assert evento.event_type == ENTITY_DELETED
        assert evento.entity_id == str(b.pk)
        assert evento.payload == {'containerId': str(lista.pk)}

    def test_delete_list_removes_its_cards(self, service, principal, board, listas, criar_cartao):
        cartao = criar_cartao(listas[1], 'A', 1000)

        eventos = service.excluir(principal, ENTITY_LIST, listas[1].pk)

        assert not Cartao.objects.filter(pk=cartao.pk).exists()
        assert list(board.listas.values_list('versao', flat=True)) == [1, 1]
        assert eventos[0].payload == {'containerId': str(board.pk)}

    def test_stranger_cannot_delete(self, service, principal_estranho, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)

        with pytest.raises(AuthorizationError):
            service.excluir(principal_estranho, ENTITY_CARD, cartao.pk)
        assert Cartao.objects.filter(pk=cartao.pk).exists()

    def test_delete_intent_over_websocket(self, service, principal, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)

        eventos = IntentHandler(service).executar(
            principal, {'action': 'delete', 'entityType': 'card', 'entityId': str(cartao.pk)}
        )

        assert [e.event_type for e in eventos] == [ENTITY_DELETED]
        assert not Cartao.objects.filter(pk=cartao.pk).exists()

    def test_unknown_card(self, service, principal):
        with pytest.raises(EntidadeNaoEncontrada):
            service.excluir(principal, ENTITY_CARD, 999999)


class TestAtividades:

    def test_every_change_is_recorded(self, service, principal, board, listas):
        eventos = service.criar_cartao(principal, listas[0].pk, 'Nova')
        cartao_id = eventos[0].entity_id
        service.mover(principal, ENTITY_CARD, cartao_id, listas[1].pk, 0)
        service.atualizar(principal, ENTITY_CARD, cartao_id, {'descricao': 'detalhes'})
        service.adicionar_comentario(principal, cartao_id, 'Feito')
        service.excluir(principal, ENTITY_CARD, cartao_id)

        tipos = list(Atividade.objects.order_by('id').values_list('tipo', flat=True))
        assert tipos == ['card_created', 'card_moved', 'card_updated', 'comment_added', 'card_deleted']

        movida = Atividade.objects.get(tipo='card_moved')
        assert movida.board_id == board.pk
        assert movida.usuario_id == int(principal.id)
        assert movida.entidade_id == cartao_id
        assert movida.dados == {'fromContainerId': str(listas[0].pk), 'toContainerId': str(listas[1].pk)}

    def test_noop_move_is_not_recorded(self, service, principal, listas, criar_cartao):
        cartao = criar_cartao(listas[0], 'A', 1000)
        service.mover(principal, ENTITY_CARD, cartao.pk, listas[0].pk, 0)
        assert not Atividade.objects.exists()

    def test_feed_is_paginated_newest_first(self, service, principal, board, listas):
        for numero in range(5):
            service.criar_lista(principal, board.pk, f'Lista {numero}')

        feed = service.listar_atividades(principal, board.pk, pagina=2, limite=2)

        assert feed['pagination'] == {'page': 2, 'limit': 2, 'total': 5, 'pages': 3}
        assert [a['dados']['titulo'] for a in feed['activities']] == ['Lista 2', 'Lista 1']
        assert feed['activities'][0]['tipo'] == 'list_created'
        assert feed['activities'][0]['usuario'] == 'Ana Souza'

    def test_stranger_cannot_read_feed(self, service, principal_estranho, board):
        with pytest.raises(AuthorizationError):
            service.listar_atividades(principal_estranho, board.pk)
