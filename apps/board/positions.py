# apps/board/positions.py

"""
Alocador de posições - chaves de ordenação fracionárias

Listas dentro de um board e cartões dentro de uma lista são ordenados por
uma chave decimal (ordem). Mover um item grava apenas a linha dele: a nova
chave fica entre as chaves dos vizinhos de destino. Quando bissecções
repetidas no mesmo ponto esgotam a precisão, o container é rebalanceado
(STEP, 2*STEP, 3*STEP, ...) preservando a ordem relativa.

Este módulo não depende do Django: o mesmo cálculo é usado pelo servidor
(com o OrmPositionStore) e pela réplica do cliente (sync_client).
"""

import logging
from decimal import Decimal, ROUND_HALF_EVEN, localcontext

from apps.core.exceptions import InvalidRangeError, PrecisionExhaustedError

logger = logging.getLogger(__name__)

DEFAULT_STEP = Decimal('1000')
DEFAULT_PRECISION = 9

# Precisão interna das operações, folgada em relação às 24 casas do banco
_CONTEXT_PREC = 40


def to_key(value):
    """Converte int/float/str/Decimal para Decimal sem herdar ruído de float"""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class PositionAllocator:
    """
    Calcula chaves de ordenação para inserções e movimentações

    O store é o colaborador de persistência (get_siblings, get_sibling_keys,
    write_positions). Para as operações puras (allocate_between,
    resolve_neighbors) ele pode ser None.
    """

    def __init__(self, store=None, step=DEFAULT_STEP, precision=DEFAULT_PRECISION):
        self.store = store
        self.step = to_key(step)
        self.precision = int(precision)
        self.quantum = Decimal(1).scaleb(-self.precision)

        if self.step <= 0:
            raise ValueError("STEP deve ser positivo")

    def quantize(self, key):
        return to_key(key).quantize(self.quantum, rounding=ROUND_HALF_EVEN)

    # === Operações principais ===

    def allocate_initial(self, container_id):
        """
        Chave para anexar ao final do container: max + STEP (ou STEP se vazio)
        """
        return self._initial_from(self.store.get_sibling_keys(container_id))

    def allocate_between(self, lower=None, upper=None):
        """
        Chave estritamente entre lower e upper

        - ambos: ponto médio
        - só upper (início): upper / 2, ou upper - STEP se upper <= 0
        - só lower (final): lower + STEP
        - nenhum (container vazio): STEP

        Raises:
            InvalidRangeError: lower >= upper (leitura desatualizada)
            PrecisionExhaustedError: não há chave representável entre os dois
        """
        lower = to_key(lower)
        upper = to_key(upper)

        with localcontext() as ctx:
            ctx.prec = _CONTEXT_PREC

            if lower is not None and upper is not None:
                if lower >= upper:
                    raise InvalidRangeError(
                        "Vizinhos fora de ordem",
                        lower=str(lower),
                        upper=str(upper)
                    )
                key = self.quantize((lower + upper) / 2)
                if not lower < key < upper:
                    raise PrecisionExhaustedError(
                        "Sem espaço entre os vizinhos",
                        lower=str(lower),
                        upper=str(upper)
                    )
                return key

            if upper is not None:
                if upper <= 0:
                    return self.quantize(upper - self.step)
                key = self.quantize(upper / 2)
                if not 0 < key < upper:
                    raise PrecisionExhaustedError(
                        "Sem espaço antes do primeiro item",
                        upper=str(upper)
                    )
                return key

            if lower is not None:
                return self.quantize(lower + self.step)

            return self.step

    def keys_need_rebalance(self, keys):
        """
        True quando dois vizinhos estão a menos de 2 incrementos mínimos
        (nenhuma chave cabe entre eles), incluindo empates exatos
        """
        ordenadas = sorted(to_key(k) for k in keys)
        limite = self.quantum * 2
        return any(
            posterior - anterior < limite
            for anterior, posterior in zip(ordenadas, ordenadas[1:])
        )

    def needs_rebalance(self, container_id):
        return self.keys_need_rebalance(self.store.get_sibling_keys(container_id))

    def rebalance(self, container_id):
        """
        Reatribui STEP, 2*STEP, ... na ordem atual (chave, id)

        A gravação é um único lote atômico no store.

        Returns:
            Lista ordenada de (entity_id, nova_chave)
        """
        irmaos = self.store.get_siblings(container_id)
        atribuicoes = [
            (entity_id, self.step * (idx + 1))
            for idx, (entity_id, _key) in enumerate(irmaos)
        ]
        self.store.write_positions(container_id, atribuicoes)

        logger.info(f"⚖️ Container {container_id} rebalanceado ({len(atribuicoes)} itens)")
        return atribuicoes

    # === Movimentação ===

    @staticmethod
    def resolve_neighbors(siblings, entity_id, target_index):
        """
        Resolve o par de vizinhos para inserir entity_id na posição target_index

        siblings: lista ordenada de (id, chave) do container de destino,
        podendo conter a própria entidade (movimento dentro da lista).

        Returns:
            (lower, upper, outros) - chaves vizinhas (ou None) e irmãos sem a entidade
        """
        outros = [(sid, key) for sid, key in siblings if sid != entity_id]
        indice = max(0, min(int(target_index), len(outros)))

        lower = outros[indice - 1][1] if indice > 0 else None
        upper = outros[indice][1] if indice < len(outros) else None
        return lower, upper, outros

    def plan_move(self, entity_id, from_container_id, to_container_id, target_index):
        """
        Nova chave para mover a entidade, ou None se for no-op

        No-op: mesmo container e a posição de destino resolve para o mesmo
        par de vizinhos que a entidade já tem. Nenhuma escrita deve ocorrer.
        """
        irmaos = self.store.get_siblings(to_container_id)
        return self.plan_move_among(irmaos, entity_id, from_container_id, to_container_id, target_index)

    def plan_move_among(self, siblings, entity_id, from_container_id, to_container_id, target_index):
        """Igual a plan_move, mas sobre uma lista de irmãos já lida"""
        lower, upper, outros = self.resolve_neighbors(siblings, entity_id, target_index)

        if str(from_container_id) == str(to_container_id):
            ids = [sid for sid, _key in siblings]
            if entity_id in ids:
                atual = ids.index(entity_id)
                destino = max(0, min(int(target_index), len(outros)))
                if atual == destino:
                    return None

        if not outros:
            # Único item no container de destino
            return self._initial_from([])

        return self.allocate_between(lower, upper)

    def _initial_from(self, keys):
        keys = [to_key(k) for k in keys]
        if not keys:
            return self.step
        with localcontext() as ctx:
            ctx.prec = _CONTEXT_PREC
            return self.quantize(max(keys) + self.step)
