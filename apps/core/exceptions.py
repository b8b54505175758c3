# apps/core/exceptions.py

"""
Exceções de domínio do Fluxo Kanban

Todas derivam de FluxoError para que views e consumers possam traduzir
qualquer falha conhecida em uma resposta para o cliente que a originou.
"""


class FluxoError(Exception):
    """Base para todas as exceções do sistema"""

    code = 'erro'
    status = 500

    def __init__(self, message='', **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self):
        return {'code': self.code, 'message': self.message, **self.details}


class InvalidRangeError(FluxoError):
    """
    Vizinhos fornecidos fora de ordem (lower >= upper)

    Normalmente indica leitura desatualizada: recuperável relendo
    os irmãos atuais e tentando de novo uma única vez.
    """

    code = 'invalid_range'
    status = 409


class PrecisionExhaustedError(InvalidRangeError):
    """Não existe chave representável entre os dois vizinhos"""

    code = 'precision_exhausted'


class AuthError(FluxoError):
    """Credencial ausente, malformada, expirada ou de usuário inexistente"""

    code = 'auth_error'
    status = 401


class AuthorizationError(FluxoError):
    """Principal sem acesso ao board solicitado"""

    code = 'forbidden'
    status = 403


class PersistenceFailure(FluxoError):
    """Escrita não foi confirmada pelo banco - nada deve ser retransmitido"""

    code = 'persistence_failure'
    status = 503


class EntidadeNaoEncontrada(FluxoError):
    code = 'not_found'
    status = 404


class DadosInvalidos(FluxoError):
    """Payload de requisição/mensagem não passou na validação"""

    code = 'invalid_payload'
    status = 400


class StaleClientState(FluxoError):
    """
    Detectado no cliente: evento se refere a container/versão desconhecidos

    Não é erro do servidor. A recuperação é sempre recarregar o board.
    """

    code = 'stale_client_state'
