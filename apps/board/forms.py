# apps/board/forms.py

"""
Validação das intenções recebidas (HTTP e WebSocket)

Os nomes dos campos seguem o contrato de fio (camelCase), assim o mesmo
formulário valida o corpo JSON das views e as mensagens do consumer.
"""

from django import forms

from apps.core.exceptions import DadosInvalidos
from .events import ENTITY_CARD, ENTITY_LIST

TIPO_CHOICES = [
    (ENTITY_CARD, 'Cartão'),
    (ENTITY_LIST, 'Lista'),
]


class MoverForm(forms.Form):
    """MoveIntent: {entityId, fromContainerId, toContainerId, targetIndex}"""

    entityType = forms.ChoiceField(choices=TIPO_CHOICES)
    entityId = forms.CharField(max_length=64)
    fromContainerId = forms.CharField(max_length=64, required=False)
    toContainerId = forms.CharField(max_length=64, required=False)
    targetIndex = forms.IntegerField(min_value=0)

    def clean(self):
        cleaned = super().clean()
        # Lista só se move dentro do próprio board; cartão precisa de destino
        if cleaned.get('entityType') == ENTITY_CARD and not cleaned.get('toContainerId'):
            self.add_error('toContainerId', 'Lista de destino é obrigatória')
        return cleaned


class CriarForm(forms.Form):
    entityType = forms.ChoiceField(choices=TIPO_CHOICES)
    containerId = forms.CharField(max_length=64)
    titulo = forms.CharField(max_length=200)
    descricao = forms.CharField(required=False)
    targetIndex = forms.IntegerField(min_value=0, required=False)


class CamposCartaoForm(forms.Form):
    """Campos editáveis de um cartão - todos opcionais"""

    titulo = forms.CharField(max_length=200, required=False)
    descricao = forms.CharField(required=False)
    prazo = forms.DateField(required=False)
    arquivado = forms.BooleanField(required=False)

    def clean_titulo(self):
        titulo = self.cleaned_data.get('titulo')
        if 'titulo' in self.data and not titulo:
            raise forms.ValidationError('Título não pode ficar vazio')
        return titulo


class CamposListaForm(forms.Form):
    titulo = forms.CharField(max_length=100, required=False)
    arquivada = forms.BooleanField(required=False)

    def clean_titulo(self):
        titulo = self.cleaned_data.get('titulo')
        if 'titulo' in self.data and not titulo:
            raise forms.ValidationError('Título não pode ficar vazio')
        return titulo


class ComentarioForm(forms.Form):
    entityId = forms.CharField(max_length=64)
    texto = forms.CharField(max_length=5000)


class ExcluirForm(forms.Form):
    entityType = forms.ChoiceField(choices=TIPO_CHOICES)
    entityId = forms.CharField(max_length=64)


class PaginacaoForm(forms.Form):
    """Paginação do feed de atividades (padrão 20, máximo 100)"""

    page = forms.IntegerField(min_value=1, required=False)
    limit = forms.IntegerField(min_value=1, max_value=100, required=False)


CAMPOS_FORMS = {
    ENTITY_CARD: CamposCartaoForm,
    ENTITY_LIST: CamposListaForm,
}


def validar(form_class, data):
    """
    Valida e retorna cleaned_data

    Raises:
        DadosInvalidos: com os erros do formulário em 'fields'
    """
    form = form_class(data=data or {})
    if not form.is_valid():
        raise DadosInvalidos("Dados inválidos", fields=form.errors.get_json_data())
    return form.cleaned_data


def validar_campos(entity_type, campos):
    """
    Valida apenas os campos presentes no payload de atualização

    Campos desconhecidos são rejeitados em vez de ignorados.
    """
    if not isinstance(campos, dict) or not campos:
        raise DadosInvalidos("Nenhum campo para atualizar")

    form_class = CAMPOS_FORMS[entity_type]
    desconhecidos = sorted(set(campos) - set(form_class.base_fields))
    if desconhecidos:
        raise DadosInvalidos("Campos não editáveis", fields={k: ['Campo não editável'] for k in desconhecidos})

    cleaned = validar(form_class, campos)
    return {nome: cleaned[nome] for nome in campos}
