# apps/__init__.py

"""
Fluxo Kanban - Aplicações Django

Este pacote contém todas as aplicações do sistema:
- core: Models principais, autenticação e permissões
- board: Posições, broker de sincronização e WebSockets
"""

__version__ = '0.1.0'
