# apps/core/signals.py

from django.db.models.signals import pre_save
from django.dispatch import receiver
from .models import Cartao, Lista


@receiver(pre_save, sender=Lista)
@receiver(pre_save, sender=Cartao)
def incrementar_versao(sender, instance, raw=False, **kwargs):
    """
    Toda gravação de uma entidade já existente gera nova versão

    Atualizações em lote (QuerySet.update) não passam por aqui;
    o OrmPositionStore incrementa com F('versao') + 1.
    """
    if raw or instance._state.adding:
        return
    instance.versao = (instance.versao or 0) + 1
