"""Erros canônicos da definição de pipeline (Conveyor).

A definição declarativa é a entrada estrutural da run. Falhas de
carregamento ou validação produzem erros explícitos e estáveis, sempre
antes de qualquer execução.
"""


class DefinitionError(Exception):
    """Erro base do domínio de definição de pipeline."""


class DefinitionFileNotFoundError(DefinitionError):
    """Arquivo de definição não existe no caminho informado."""


class UnsupportedDefinitionFormatError(DefinitionError):
    """Formato de definição não suportado (v1: YAML/JSON)."""


class DefinitionParseError(DefinitionError):
    """Falha ao parsear YAML/JSON ou raiz que não é um mapping."""


class DefinitionValidationError(DefinitionError):
    """Definição não é estruturalmente válida segundo o schema canônico."""


class UnknownStageTypeError(DefinitionValidationError):
    """Um Stage declara `type` ausente do catálogo de tipos."""
