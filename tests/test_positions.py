"""
Testes do alocador de posições (sem banco)
"""

import random
from decimal import Decimal

import pytest

from apps.board.positions import DEFAULT_STEP, PositionAllocator
from apps.core.exceptions import InvalidRangeError, PrecisionExhaustedError
from tests.fakes import InMemoryStore


@pytest.fixture
def allocator():
    return PositionAllocator()


class TestAllocateBetween:

    def test_midpoint_is_strictly_between(self, allocator):
        key = allocator.allocate_between(Decimal('1000'), Decimal('2000'))
        assert key == Decimal('1500')
        assert Decimal('1000') < key < Decimal('2000')

    def test_head_halves_upper(self, allocator):
        assert allocator.allocate_between(upper=Decimal('1000')) == Decimal('500')

    def test_head_with_non_positive_upper_steps_down(self, allocator):
        assert allocator.allocate_between(upper=Decimal('0')) == Decimal('-1000')
        assert allocator.allocate_between(upper=Decimal('-5')) == Decimal('-1005')

    def test_tail_adds_step(self, allocator):
        assert allocator.allocate_between(lower=Decimal('3000')) == Decimal('4000')

    def test_empty_container_gets_step(self, allocator):
        assert allocator.allocate_between() == DEFAULT_STEP

    def test_accepts_strings_and_ints(self, allocator):
        assert allocator.allocate_between('1', 2) == Decimal('1.5')

    @pytest.mark.parametrize('lower, upper', [
        ('2000', '1000'),
        ('1000', '1000'),
    ])
    def test_out_of_order_neighbors_raise(self, allocator, lower, upper):
        with pytest.raises(InvalidRangeError):
            allocator.allocate_between(Decimal(lower), Decimal(upper))

    def test_adjacent_quanta_exhaust_precision(self, allocator):
        with pytest.raises(PrecisionExhaustedError):
            allocator.allocate_between(Decimal('1000.000000000'), Decimal('1000.000000001'))

    def test_precision_exhausted_is_an_invalid_range(self):
        assert issubclass(PrecisionExhaustedError, InvalidRangeError)


class TestAllocateInitial:

    def test_empty_container(self):
        allocator = PositionAllocator(InMemoryStore({'L1': {}}))
        assert allocator.allocate_initial('L1') == Decimal('1000')

    def test_appends_after_max(self):
        allocator = PositionAllocator(InMemoryStore({'L1': {'a': 1000, 'b': 2500}}))
        assert allocator.allocate_initial('L1') == Decimal('3500')

    def test_custom_step(self):
        allocator = PositionAllocator(InMemoryStore({'L1': {'a': 10}}), step=Decimal('10'))
        assert allocator.allocate_initial('L1') == Decimal('20')

    def test_step_must_be_positive(self):
        with pytest.raises(ValueError):
            PositionAllocator(step=0)


class TestRebalance:

    def test_tiny_gap_needs_rebalance(self, allocator):
        assert allocator.keys_need_rebalance([Decimal('1000'), Decimal('1000.0000000001')])

    def test_exact_tie_needs_rebalance(self, allocator):
        assert allocator.keys_need_rebalance([Decimal('1000'), Decimal('1000')])

    def test_step_gap_does_not_need_rebalance(self, allocator):
        assert not allocator.keys_need_rebalance([Decimal('1000'), Decimal('2000')])
        assert not allocator.keys_need_rebalance([])
        assert not allocator.keys_need_rebalance([Decimal('5')])

    def test_rebalance_restores_uniform_spacing(self):
        store = InMemoryStore({'L1': {'a': '1000', 'b': '1000.0000000001', 'c': '1000.5'}})
        allocator = PositionAllocator(store)

        assert allocator.needs_rebalance('L1')
        resultado = allocator.rebalance('L1')

        assert resultado == [('a', Decimal('1000')), ('b', Decimal('2000')), ('c', Decimal('3000'))]
        assert store.ordem('L1') == ['a', 'b', 'c']
        assert not allocator.needs_rebalance('L1')

    def test_rebalance_breaks_ties_by_id(self):
        store = InMemoryStore({'L1': {'b': 1000, 'a': 1000}})
        allocator = PositionAllocator(store)

        allocator.rebalance('L1')

        assert store.containers['L1'] == {'a': Decimal('1000'), 'b': Decimal('2000')}

    def test_rebalance_writes_single_batch(self):
        store = InMemoryStore({'L1': {'a': 1, 'b': 2, 'c': 3}})
        PositionAllocator(store).rebalance('L1')

        assert len(store.escritas) == 1
        assert store.escritas[0][0] == 'lote'

    def test_repeated_same_spot_insertion_then_rebalance(self):
        store = InMemoryStore({'L1': {'a': 1000, 'b': 2000}})
        allocator = PositionAllocator(store)

        # Sempre logo depois de 'a': a distância até o vizinho cai pela metade
        inseridos = 0
        while True:
            irmaos = store.get_siblings('L1')
            try:
                key = allocator.allocate_between(irmaos[0][1], irmaos[1][1])
            except PrecisionExhaustedError:
                break
            inseridos += 1
            store.containers['L1'][f'n{inseridos:03d}'] = key

        assert inseridos > 30
        assert allocator.needs_rebalance('L1')

        ordem_antes = store.ordem('L1')
        allocator.rebalance('L1')

        keys = store.get_sibling_keys('L1')
        assert store.ordem('L1') == ordem_antes
        assert keys == [DEFAULT_STEP * (i + 1) for i in range(len(keys))]
        assert not allocator.needs_rebalance('L1')


class TestPlanMove:

    def test_move_to_head_of_two_item_list(self):
        # [A(1000), C(2000)] -> C para o índice 0 -> [C(500), A(1000)]
        store = InMemoryStore({'L1': {'A': 1000, 'C': 2000}})
        allocator = PositionAllocator(store)

        key = allocator.plan_move('C', 'L1', 'L1', 0)
        assert key == Decimal('500')

        store.write_entity_position('C', 'L1', key)
        assert store.get_siblings('L1') == [('C', Decimal('500')), ('A', Decimal('1000'))]

    def test_move_to_current_position_is_noop(self):
        store = InMemoryStore({'L1': {'A': 1000, 'B': 2000, 'C': 3000}})
        allocator = PositionAllocator(store)

        assert allocator.plan_move('B', 'L1', 'L1', 1) is None
        assert allocator.plan_move('A', 'L1', 'L1', 0) is None
        # Índice além do fim é ajustado: C já é o último
        assert allocator.plan_move('C', 'L1', 'L1', 99) is None

    def test_move_down_within_list(self):
        store = InMemoryStore({'L1': {'A': 1000, 'B': 2000, 'C': 3000}})
        allocator = PositionAllocator(store)

        # A para depois de B: vizinhos (B, C) excluindo a própria A
        assert allocator.plan_move('A', 'L1', 'L1', 1) == Decimal('2500')

    def test_move_into_empty_container(self):
        store = InMemoryStore({'L1': {'A': 1000}, 'L2': {}})
        allocator = PositionAllocator(store)

        assert allocator.plan_move('A', 'L1', 'L2', 3) == DEFAULT_STEP

    def test_move_to_tail_of_other_container(self):
        store = InMemoryStore({'L1': {'A': 1000}, 'L2': {'X': 1000, 'Y': 2000}})
        allocator = PositionAllocator(store)

        assert allocator.plan_move('A', 'L1', 'L2', 2) == Decimal('3000')

    def test_resolve_neighbors_clamps_negative_index(self):
        siblings = [('A', Decimal('1000')), ('B', Decimal('2000'))]
        lower, upper, outros = PositionAllocator.resolve_neighbors(siblings, 'X', -3)

        assert lower is None
        assert upper == Decimal('1000')
        assert len(outros) == 2

    def test_random_moves_keep_keys_distinct_and_ordered(self):
        ids = [f'c{i}' for i in range(8)]
        store = InMemoryStore({
            'L1': {entity_id: DEFAULT_STEP * (i + 1) for i, entity_id in enumerate(ids[:5])},
            'L2': {entity_id: DEFAULT_STEP * (i + 1) for i, entity_id in enumerate(ids[5:])},
        })
        esperado = {'L1': ids[:5], 'L2': ids[5:]}
        allocator = PositionAllocator(store)
        rng = random.Random(42)

        for _ in range(300):
            origem = rng.choice([c for c in esperado if esperado[c]])
            entity_id = rng.choice(esperado[origem])
            destino = rng.choice(list(esperado))
            outros = [e for e in esperado[destino] if e != entity_id]
            indice = rng.randint(0, len(outros))

            try:
                key = allocator.plan_move(entity_id, origem, destino, indice)
            except InvalidRangeError:
                allocator.rebalance(destino)
                key = allocator.plan_move(entity_id, origem, destino, indice)

            esperado[origem].remove(entity_id)
            outros.insert(indice, entity_id)
            esperado[destino] = outros

            if key is not None:
                store.write_entity_position(entity_id, destino, key)

            for container, ordem in esperado.items():
                keys = store.get_sibling_keys(container)
                assert len(set(keys)) == len(keys)
                assert store.ordem(container) == ordem
