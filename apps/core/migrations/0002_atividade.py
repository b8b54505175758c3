import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('core', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Atividade',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tipo', models.CharField(choices=[('list_created', 'Lista criada'), ('list_moved', 'Lista movida'), ('list_updated', 'Lista atualizada'), ('list_deleted', 'Lista excluída'), ('card_created', 'Cartão criado'), ('card_moved', 'Cartão movido'), ('card_updated', 'Cartão atualizado'), ('card_deleted', 'Cartão excluído'), ('comment_added', 'Comentário adicionado')], max_length=20)),
                ('entidade_tipo', models.CharField(max_length=10)),
                ('entidade_id', models.CharField(max_length=64)),
                ('dados', models.JSONField(blank=True, default=dict)),
                ('criado_em', models.DateTimeField(auto_now_add=True)),
                ('board', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='atividades', to='core.board')),
                ('usuario', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='atividades', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'atividade',
                'ordering': ['-criado_em', '-id'],
                'indexes': [models.Index(fields=['board', '-criado_em'], name='atividade_board_data_idx')],
            },
        ),
    ]
