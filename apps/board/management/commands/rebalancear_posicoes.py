# apps/board/management/commands/rebalancear_posicoes.py

from django.apps import apps
from django.core.management.base import BaseCommand, CommandError

from apps.board.events import ENTITY_CARD, ENTITY_LIST
from apps.core.models import Board, Lista


class Command(BaseCommand):
    help = 'Rebalanceia as chaves de ordenação de listas e cartões que esgotaram a precisão'

    def add_arguments(self, parser):
        parser.add_argument(
            '--board',
            type=int,
            help='Limita a verificação a um board'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Apenas lista os containers que precisam de rebalanceamento'
        )

    def handle(self, *args, **options):
        """
        Varre boards (containers de listas) e listas (containers de cartões)

        Executado fora de uma conexão: não há retransmissão. Clientes
        conectados percebem as novas chaves no próximo sync.
        """
        service = apps.get_app_config('board').service

        boards = Board.objects.filter(ativo=True)
        if options['board'] is not None:
            boards = boards.filter(pk=options['board'])
            if not boards.exists():
                raise CommandError(f"Board {options['board']} não encontrado")

        containers = []
        for board_id in boards.values_list('id', flat=True):
            containers.append((ENTITY_LIST, board_id, f'board {board_id}'))
            for lista_id in Lista.objects.filter(board_id=board_id).values_list('id', flat=True):
                containers.append((ENTITY_CARD, lista_id, f'lista {lista_id}'))

        self.stdout.write(f'🔍 Verificando {len(containers)} containers...')

        total = 0
        for entity_type, container_id, descricao in containers:
            allocator = service.allocators[entity_type]
            if not allocator.needs_rebalance(container_id):
                continue

            total += 1
            if options['dry_run']:
                self.stdout.write(f'  ⚖️ {descricao} precisa de rebalanceamento')
                continue

            atribuicoes = service.rebalancear_container(entity_type, container_id)
            self.stdout.write(f'  ✅ {descricao}: {len(atribuicoes)} itens rebalanceados')

        if options['dry_run']:
            self.stdout.write(self.style.WARNING(f'\n{total} container(s) precisam de rebalanceamento (dry-run)'))
        else:
            self.stdout.write(self.style.SUCCESS(f'\n✅ {total} container(s) rebalanceado(s)'))
