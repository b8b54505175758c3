# apps/core/admin.py

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.db.models import Count
from .models import Usuario, Board, Lista, Cartao, Comentario, Atividade


@admin.register(Usuario)
class UsuarioAdmin(BaseUserAdmin):
    """Admin customizado para o modelo Usuario"""

    list_display = [
        'username', 'email', 'get_full_name',
        'is_active', 'date_joined'
    ]
    list_filter = ['is_staff', 'is_active', 'date_joined']
    search_fields = ['username', 'first_name', 'last_name', 'email']
    ordering = ['-date_joined']


class ListaInline(admin.TabularInline):
    """Listas do board, na ordem de exibição"""

    model = Lista
    extra = 0
    fields = ['titulo', 'ordem', 'versao', 'arquivada']
    readonly_fields = ['versao']
    ordering = ['ordem', 'id']


@admin.register(Board)
class BoardAdmin(admin.ModelAdmin):
    """Admin para boards Kanban"""

    list_display = [
        'titulo', 'dono', 'membros_count', 'listas_count',
        'ativo', 'criado_em'
    ]
    list_filter = ['ativo', 'criado_em']
    search_fields = ['titulo', 'descricao', 'dono__username']
    filter_horizontal = ['membros']
    readonly_fields = ['criado_em']
    inlines = [ListaInline]

    def get_queryset(self, request):
        return super().get_queryset(request).annotate(
            _membros=Count('membros', distinct=True),
            _listas=Count('listas', distinct=True),
        )

    def membros_count(self, obj):
        """Conta quantidade de membros"""
        return obj._membros

    membros_count.short_description = 'Membros'

    def listas_count(self, obj):
        return obj._listas

    listas_count.short_description = 'Listas'


class CartaoInline(admin.TabularInline):
    model = Cartao
    extra = 0
    fields = ['titulo', 'ordem', 'versao', 'arquivado']
    readonly_fields = ['versao']
    ordering = ['ordem', 'id']


@admin.register(Lista)
class ListaAdmin(admin.ModelAdmin):
    list_display = ['titulo', 'board', 'ordem', 'versao', 'arquivada']
    list_filter = ['arquivada', 'board']
    search_fields = ['titulo', 'board__titulo']
    readonly_fields = ['versao', 'criado_em', 'atualizado_em']
    inlines = [CartaoInline]


class ComentarioInline(admin.TabularInline):
    """Inline somente leitura para comentários"""

    model = Comentario
    extra = 0
    fields = ['usuario', 'texto', 'criado_em']
    readonly_fields = ['usuario', 'texto', 'criado_em']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Cartao)
class CartaoAdmin(admin.ModelAdmin):
    list_display = ['titulo', 'lista', 'ordem', 'versao', 'prazo', 'arquivado']
    list_filter = ['arquivado', 'lista__board']
    search_fields = ['titulo', 'descricao']
    readonly_fields = ['versao', 'criado_em', 'atualizado_em']
    raw_id_fields = ['lista', 'criado_por']
    inlines = [ComentarioInline]


@admin.register(Comentario)
class ComentarioAdmin(admin.ModelAdmin):
    list_display = ['cartao', 'usuario', 'texto_resumo', 'criado_em']
    search_fields = ['texto', 'usuario__username', 'cartao__titulo']
    readonly_fields = ['criado_em']

    def texto_resumo(self, obj):
        """Resumo do texto do comentário"""
        return obj.texto[:50] + '...' if len(obj.texto) > 50 else obj.texto

    texto_resumo.short_description = 'Texto'


@admin.register(Atividade)
class AtividadeAdmin(admin.ModelAdmin):
    """Feed de atividades - somente leitura"""

    list_display = ['tipo', 'board', 'usuario', 'entidade_tipo', 'entidade_id', 'criado_em']
    list_filter = ['tipo', 'board']
    search_fields = ['usuario__username', 'entidade_id']
    readonly_fields = ['board', 'usuario', 'tipo', 'entidade_tipo', 'entidade_id', 'dados', 'criado_em']

    def has_add_permission(self, request):
        return False
