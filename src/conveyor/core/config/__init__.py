# src/conveyor/core/config/__init__.py

"""
Camada de configuração do Conveyor.

A configuração controla políticas do engine (fail-fast, paralelismo),
parâmetros de health check, shell utilizado e habilitação de Stages.
Ela é separada do arquivo de definição do pipeline: a definição descreve
O QUE executar, a configuração descreve COMO executar.

Responsabilidades do pacote:
    - Carregamento de arquivos (defaults + overrides locais)
    - Resolução via deep-merge determinístico
    - Hash canônico para rastreabilidade no Manifest

Invariantes:
    - A configuração final é um dicionário puro (dict)
    - Conflitos estruturais são tratados como erro
"""

from .errors import (
    ConfigError,
    ConfigTypeConflictError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .hashing import compute_config_hash
from .loader import load_config, section
from .merge import deep_merge

__all__ = [
    "ConfigError",
    "ConfigTypeConflictError",
    "DefaultsNotFoundError",
    "InvalidConfigRootTypeError",
    "UnsupportedConfigFormatError",
    "compute_config_hash",
    "deep_merge",
    "load_config",
    "section",
]
