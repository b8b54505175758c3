# apps/board/__init__.py

"""
Board - Sincronização em tempo real do Fluxo Kanban

Funcionalidades:
- Chaves de ordenação fracionárias (positions)
- Salas por board e retransmissão de eventos (broker + consumers)
- Serviço de intenções e endpoints JSON
- Réplica do board no cliente (sync_client)
"""
