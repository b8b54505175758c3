# apps/core/__init__.py

"""
Core - Aplicação principal do Fluxo Kanban

Contém:
- Models (Usuario, Board, Lista, Cartao, Comentario)
- Exceções de domínio
- Autenticação JWT e permissões por board
- Comando de seed para desenvolvimento
"""
