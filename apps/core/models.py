# apps/core/models.py

from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q


# Chaves de ordenação: decimal de precisão fixa (9 casas)
ORDEM_MAX_DIGITS = 24
ORDEM_DECIMAL_PLACES = 9


class Usuario(AbstractUser):
    """
    Modelo de usuário customizado

    O id do usuário é o "sub" dos tokens JWT emitidos pelo sistema.
    """

    criado_em = models.DateTimeField(auto_now_add=True)
    atualizado_em = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'usuario'

    @property
    def nome_exibicao(self):
        """Nome usado nos eventos em tempo real"""
        return self.get_full_name() or self.username

    def get_boards_acessiveis(self):
        """
        Retorna boards que o usuário pode acessar

        Regra: dono do board OU membro
        """
        return Board.objects.filter(
            Q(dono=self) | Q(membros=self),
            ativo=True
        ).distinct()

    def __str__(self):
        return self.nome_exibicao


class Board(models.Model):
    """Quadro Kanban - container das listas"""

    LISTAS_PADRAO = ['A Fazer', 'Em Progresso', 'Concluído']

    titulo = models.CharField(max_length=200)
    descricao = models.TextField(blank=True)
    dono = models.ForeignKey(
        Usuario,
        on_delete=models.PROTECT,
        related_name='boards_criados'
    )
    membros = models.ManyToManyField(
        Usuario,
        related_name='boards_membro',
        blank=True
    )
    ativo = models.BooleanField(default=True)
    criado_em = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'board'
        ordering = ['titulo']

    def __str__(self):
        return self.titulo

    def criar_listas_padrao(self, step=Decimal('1000')):
        """Cria listas padrão para novo board, espaçadas por STEP"""
        return [
            Lista.objects.create(titulo=titulo, board=self, ordem=step * (idx + 1))
            for idx, titulo in enumerate(self.LISTAS_PADRAO)
        ]


class EntidadeOrdenada(models.Model):
    """
    Base abstrata para entidades ordenadas dentro de um container

    - ordem: chave fracionária; ordem crescente define a exibição
    - versao: marcador monotônico usado pelos clientes para detectar cópia velha
    """

    ordem = models.DecimalField(
        max_digits=ORDEM_MAX_DIGITS,
        decimal_places=ORDEM_DECIMAL_PLACES,
        default=Decimal('0')
    )
    versao = models.PositiveIntegerField(default=1)
    criado_em = models.DateTimeField(auto_now_add=True)
    atualizado_em = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Lista(EntidadeOrdenada):
    """Lista (coluna) do board"""

    titulo = models.CharField(max_length=100)
    board = models.ForeignKey(
        Board,
        on_delete=models.CASCADE,
        related_name='listas'
    )
    arquivada = models.BooleanField(default=False)

    class Meta:
        db_table = 'lista'
        ordering = ['ordem', 'id']
        indexes = [
            models.Index(fields=['board', 'ordem'], name='lista_board_ordem_idx'),
        ]

    def __str__(self):
        return f"{self.titulo} - {self.board.titulo}"


class Cartao(EntidadeOrdenada):
    """Cartão dentro de uma lista"""

    titulo = models.CharField(max_length=200)
    descricao = models.TextField(blank=True)
    lista = models.ForeignKey(
        Lista,
        on_delete=models.CASCADE,
        related_name='cartoes'
    )
    prazo = models.DateField(null=True, blank=True)
    arquivado = models.BooleanField(default=False)
    criado_por = models.ForeignKey(
        Usuario,
        on_delete=models.PROTECT,
        related_name='cartoes_criados'
    )

    class Meta:
        db_table = 'cartao'
        ordering = ['ordem', 'id']
        indexes = [
            models.Index(fields=['lista', 'ordem'], name='cartao_lista_ordem_idx'),
        ]

    def __str__(self):
        return self.titulo


class Comentario(models.Model):
    """Comentários em cartões"""

    cartao = models.ForeignKey(
        Cartao,
        on_delete=models.CASCADE,
        related_name='comentarios'
    )
    usuario = models.ForeignKey(
        Usuario,
        on_delete=models.CASCADE,
        related_name='comentarios'
    )
    texto = models.TextField()
    criado_em = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'comentario'
        ordering = ['-criado_em']

    def __str__(self):
        return f"Comentário de {self.usuario.username} em {self.criado_em:%d/%m/%Y}"


class Atividade(models.Model):
    """
    Registro de atividade do board (feed de atividades)

    A entidade é guardada como tipo + id em texto para que o histórico
    sobreviva à exclusão do cartão ou da lista.
    """

    TIPO_CHOICES = [
        ('list_created', 'Lista criada'),
        ('list_moved', 'Lista movida'),
        ('list_updated', 'Lista atualizada'),
        ('list_deleted', 'Lista excluída'),
        ('card_created', 'Cartão criado'),
        ('card_moved', 'Cartão movido'),
        ('card_updated', 'Cartão atualizado'),
        ('card_deleted', 'Cartão excluído'),
        ('comment_added', 'Comentário adicionado'),
    ]

    board = models.ForeignKey(
        Board,
        on_delete=models.CASCADE,
        related_name='atividades'
    )
    usuario = models.ForeignKey(
        Usuario,
        on_delete=models.SET_NULL,
        null=True,
        related_name='atividades'
    )
    tipo = models.CharField(max_length=20, choices=TIPO_CHOICES)
    entidade_tipo = models.CharField(max_length=10)
    entidade_id = models.CharField(max_length=64)
    dados = models.JSONField(default=dict, blank=True)
    criado_em = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'atividade'
        ordering = ['-criado_em', '-id']
        indexes = [
            models.Index(fields=['board', '-criado_em'], name='atividade_board_data_idx'),
        ]

    def __str__(self):
        return f"{self.get_tipo_display()} - {self.board.titulo}"

    def as_wire(self):
        return {
            'id': str(self.pk),
            'tipo': self.tipo,
            'entityType': self.entidade_tipo,
            'entityId': self.entidade_id,
            'dados': self.dados,
            'usuario': self.usuario.nome_exibicao if self.usuario_id else None,
            'criadoEm': self.criado_em.isoformat(),
        }
