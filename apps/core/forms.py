# apps/core/forms.py

from django import forms


class LoginForm(forms.Form):
    """Formulário de login para emissão de token"""

    username = forms.CharField(
        label='Usuário',
        max_length=150
    )

    password = forms.CharField(
        label='Senha',
        strip=False
    )
