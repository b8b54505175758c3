# apps/board/storage.py

import logging
from contextlib import contextmanager

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from apps.core.exceptions import EntidadeNaoEncontrada, PersistenceFailure
from apps.core.models import Cartao, Lista

logger = logging.getLogger(__name__)


@contextmanager
def gravacao(mensagem, **details):
    """
    Toda escrita no banco passa por aqui

    DatabaseError vira PersistenceFailure (503 / frame de erro), que
    o chamador devolve apenas para quem originou a mudança.
    """
    try:
        yield
    except DatabaseError as e:
        logger.error(f"❌ {mensagem}: {e}")
        raise PersistenceFailure(mensagem, **details) from e


class OrmPositionStore:
    """
    Colaborador de persistência do alocador, sobre o ORM do Django

    Uma instância por tipo de entidade ordenada:
    - listas: container = board
    - cartões: container = lista
    """

    def __init__(self, model, container_field):
        self.model = model
        self.container_field = container_field
        self.container_attname = f'{container_field}_id'

    def _irmaos(self, container_id):
        return self.model.objects.filter(**{self.container_attname: container_id})

    def get_siblings(self, container_id):
        """Lista ordenada de (id, chave), empates desfeitos por id"""
        return list(
            self._irmaos(container_id)
            .order_by('ordem', 'id')
            .values_list('id', 'ordem')
        )

    def get_sibling_keys(self, container_id):
        return [key for _id, key in self.get_siblings(container_id)]

    def get_versions(self, container_id):
        """(id, chave, versão) na ordem de exibição"""
        return list(
            self._irmaos(container_id)
            .order_by('ordem', 'id')
            .values_list('id', 'ordem', 'versao')
        )

    def get_entity_by_id(self, entity_id):
        try:
            return self.model.objects.get(pk=entity_id)
        except (self.model.DoesNotExist, ValueError, TypeError):
            raise EntidadeNaoEncontrada(
                f"{self.model._meta.verbose_name} {entity_id} não encontrado(a)",
                entity_id=str(entity_id)
            )

    def write_entity_position(self, entity_id, container_id, order_key):
        """
        Grava container + chave de uma única entidade

        Returns:
            Nova versão da entidade

        Raises:
            PersistenceFailure: banco recusou a escrita ou a entidade sumiu
        """
        return self._gravar(entity_id, **{
            self.container_attname: container_id,
            'ordem': order_key,
        })

    def write_fields(self, entity_id, fields):
        """
        Grava campos editáveis com incremento atômico da versão

        A versão vem do banco (F('versao') + 1), nunca da instância lida
        antes: duas mudanças concorrentes não podem dividir um número.
        """
        return self._gravar(entity_id, **fields)

    def write_positions(self, container_id, assignments):
        """
        Grava em lote atômico as chaves de um container inteiro

        Aplicação parcial corromperia a ordem: ou todas ou nenhuma.

        Returns:
            Dict id -> nova versão
        """
        agora = timezone.now()
        with gravacao("Falha ao rebalancear container", container_id=str(container_id)), transaction.atomic():
            for entity_id, order_key in assignments:
                self._irmaos(container_id).filter(pk=entity_id).update(
                    ordem=order_key,
                    versao=F('versao') + 1,
                    atualizado_em=agora,
                )
            ids = [entity_id for entity_id, _key in assignments]
            return dict(
                self.model.objects.filter(pk__in=ids).values_list('id', 'versao')
            )

    def _gravar(self, entity_id, **campos):
        with gravacao("Falha ao gravar entidade", entity_id=str(entity_id)), transaction.atomic():
            atualizadas = self.model.objects.filter(pk=entity_id).update(
                versao=F('versao') + 1,
                atualizado_em=timezone.now(),
                **campos
            )
            if atualizadas == 0:
                raise PersistenceFailure(
                    "Entidade removida antes da gravação",
                    entity_id=str(entity_id)
                )
            return self.model.objects.values_list('versao', flat=True).get(pk=entity_id)


def list_store():
    return OrmPositionStore(Lista, 'board')


def card_store():
    return OrmPositionStore(Cartao, 'lista')
