# src/conveyor/core/config/errors.py
"""
Exceções canônicas da camada de configuração do Conveyor.

As exceções aqui definidas representam violações estruturais da
configuração (arquivo ausente, formato inválido, conflito de tipos) e
não falhas de execução de Stages.

Invariantes:
    - Todas as exceções de configuração herdam de `ConfigError`
    - Nenhuma exceção representa falha de ferramenta externa
"""


class ConfigError(Exception):
    """
    Exceção base para erros relacionados à configuração do Conveyor.

    Permite captura genérica de falhas de configuração, distinguindo-as
    de falhas de definição de pipeline e de execução.
    """


class DefaultsNotFoundError(ConfigError):
    """
    O arquivo de configuração base (defaults) não foi encontrado.

    Decisões arquiteturais:
        - O arquivo de defaults é obrigatório
        - Defaults nunca são inferidos ou criados automaticamente
    """


class UnsupportedConfigFormatError(ConfigError):
    """
    Formato de arquivo de configuração não suportado.

    Formatos suportados (v1):
        - YAML (.yaml, .yml)
        - JSON (.json)
    """


class InvalidConfigRootTypeError(ConfigError):
    """O conteúdo raiz da configuração não é um dicionário."""


class ConfigTypeConflictError(ConfigError):
    """
    Conflito de tipos durante o deep-merge.

    Exemplo de conflito:
        - base:     {"engine": {"fail_fast": true}}
        - override: {"engine": "DEBUG"}

    Nenhum merge parcial é produzido e não há coerção de tipos.
    """
