# apps/board/urls.py

from django.urls import path
from . import views

app_name = 'board'

urlpatterns = [
    # Boards acessíveis e estado completo
    path('', views.listar_boards, name='listar'),
    path('<int:board_id>/', views.board_snapshot, name='snapshot'),
    path('<int:board_id>/atividades/', views.listar_atividades, name='atividades'),

    # Listas
    path('<int:board_id>/listas/', views.criar_lista, name='criar_lista'),
    path('listas/<int:lista_id>/', views.lista_detalhe, name='lista_detalhe'),
    path('listas/<int:lista_id>/mover/', views.mover_lista, name='mover_lista'),

    # Cartões
    path('listas/<int:lista_id>/cartoes/', views.criar_cartao, name='criar_cartao'),
    path('cartoes/<int:cartao_id>/', views.cartao_detalhe, name='cartao_detalhe'),
    path('cartoes/<int:cartao_id>/mover/', views.mover_cartao, name='mover_cartao'),

    # Comentários
    path('cartoes/<int:cartao_id>/comentarios/', views.adicionar_comentario, name='adicionar_comentario'),
]
