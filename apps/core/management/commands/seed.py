# apps/core/management/commands/seed.py

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import connection, transaction

from apps.board.positions import DEFAULT_STEP, to_key
from apps.core.models import Usuario, Board, Lista, Cartao

SENHA_PADRAO = 'fluxo123'

USUARIOS_DEMO = [
    ('ana', 'Ana', 'Souza'),
    ('bruno', 'Bruno', 'Lima'),
]

CARTOES_DEMO = {
    'A Fazer': ['Definir escopo do sprint', 'Revisar backlog', 'Configurar CI'],
    'Em Progresso': ['Tela de login', 'Sincronização em tempo real'],
    'Concluído': ['Modelagem do banco'],
}


class Command(BaseCommand):
    help = 'Cria dados de demonstração: usuários, um board com listas e cartões'

    def add_arguments(self, parser):
        parser.add_argument(
            '--senha',
            default=SENHA_PADRAO,
            help='Senha dos usuários de demonstração'
        )

    def handle(self, *args, **options):
        """
        Popula o banco com um board compartilhado entre dois usuários
        """
        self.stdout.write('🌱 Criando dados de demonstração...')

        self._testar_conectividade_banco()

        if Board.objects.filter(titulo='Board Demo').exists():
            self.stdout.write(self.style.WARNING('⚠️ Board Demo já existe - nada a fazer'))
            return

        step = to_key(getattr(settings, 'FLUXO_POSITION_STEP', DEFAULT_STEP))

        with transaction.atomic():
            usuarios = [self._criar_usuario(*dados, senha=options['senha']) for dados in USUARIOS_DEMO]
            dono, membro = usuarios

            board = Board.objects.create(
                titulo='Board Demo',
                descricao='Board de demonstração do Fluxo Kanban',
                dono=dono
            )
            board.membros.add(membro)

            listas = board.criar_listas_padrao(step=step)
            total_cartoes = 0
            for lista in listas:
                for idx, titulo in enumerate(CARTOES_DEMO.get(lista.titulo, [])):
                    Cartao.objects.create(
                        titulo=titulo,
                        lista=lista,
                        ordem=step * (idx + 1),
                        criado_por=dono
                    )
                    total_cartoes += 1

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✅ DADOS CRIADOS!\n'
                f'  • Usuários: {", ".join(u.username for u in usuarios)} (senha: {options["senha"]})\n'
                f'  • Board: {board.titulo} (id {board.pk})\n'
                f'  • Listas: {Lista.objects.filter(board=board).count()}\n'
                f'  • Cartões: {total_cartoes}\n'
            )
        )

    def _criar_usuario(self, username, first_name, last_name, senha):
        usuario, criado = Usuario.objects.get_or_create(
            username=username,
            defaults={'first_name': first_name, 'last_name': last_name}
        )
        if criado:
            usuario.set_password(senha)
            usuario.save()
            self.stdout.write(f'    ✅ Usuário criado: {username}')
        return usuario

    def _testar_conectividade_banco(self):
        """Testa conectividade básica"""
        self.stdout.write('  🔗 Testando conectividade do banco...')

        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            result = cursor.fetchone()

            if result[0] != 1:
                raise CommandError("Banco não está respondendo corretamente")
