# src/conveyor/core/config/loader.py
"""
Loader canônico de configuração do Conveyor.

A configuração é resolvida a partir de:
    - um arquivo de defaults (obrigatório)
    - um arquivo local de overrides (opcional)

Chaves reconhecidas pelo core (v1):
    - engine.fail_fast, engine.max_parallel
    - run.root
    - health.attempts, health.interval_seconds, health.timeout_seconds
    - shell.executable, shell.timeout_seconds
    - stages.<stage_id>.enabled
    - environment (mapa de variáveis adicionais)

Invariantes:
    - O arquivo de defaults é obrigatório
    - O resultado é sempre um dicionário puro (`dict`)
    - Overrides nunca mutam os defaults
"""

import json
from pathlib import Path
from typing import IO, Any, Callable, Dict, Optional

import yaml  # PyYAML

from .errors import (
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .merge import deep_merge


def _read_yaml(fh: IO[str]) -> Any:
    return yaml.safe_load(fh)


_READERS: Dict[str, Callable[[IO[str]], Any]] = {
    ".yaml": _read_yaml,
    ".yml": _read_yaml,
    ".json": json.load,
}


def _read_mapping(path: Path) -> Dict[str, Any]:
    """
    Lê um arquivo de config (YAML/JSON) e exige um mapping na raiz.

    Arquivo vazio vale `{}`. A existência do arquivo é verificada por quem chama.

    Raises:
        UnsupportedConfigFormatError: extensão fora de `.yaml`, `.yml`, `.json`.
        InvalidConfigRootTypeError: raiz que não é mapping.
    """
    reader = _READERS.get(path.suffix.lower())
    if reader is None:
        raise UnsupportedConfigFormatError(f"Formato não suportado: {path.suffix or path.name}")

    with path.open("r", encoding="utf-8") as fh:
        data = reader(fh)

    data = {} if data is None else data
    if not isinstance(data, dict):
        raise InvalidConfigRootTypeError(f"{path.name}: a raiz deve ser um mapping, recebido {type(data).__name__}")
    return data


def load_config(
    *,
    defaults_path: str,
    local_path: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Carrega e resolve a configuração efetiva do pipeline.

    Política de resolução:
        - O arquivo de defaults é obrigatório
        - O arquivo local é opcional (ausente → ignorado)
        - Quando presente, o local sempre tem prioridade sobre defaults

    Args:
        defaults_path (str): Caminho para o arquivo de configuração base.
        local_path (Optional[str]): Caminho opcional para overrides locais.

    Returns:
        Dict[str, Any]: Configuração final resolvida.

    Raises:
        DefaultsNotFoundError: Se o arquivo de defaults não existir.
        UnsupportedConfigFormatError: Se o formato do arquivo não for suportado.
        InvalidConfigRootTypeError: Se o conteúdo não for um dicionário.
        ConfigTypeConflictError: Se ocorrer conflito estrutural durante o merge.
    """

    defaults_file = Path(defaults_path)
    if not defaults_file.is_file():
        raise DefaultsNotFoundError(f"Arquivo de defaults não encontrado: {defaults_file}")
    config = _read_mapping(defaults_file)

    local_file = Path(local_path) if local_path else None
    if local_file is None or not local_file.is_file():
        return config
    return deep_merge(config, _read_mapping(local_file))


def section(config: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    """Retorna `config[name]` como dict (vazio quando ausente ou inválido)."""
    value = (config or {}).get(name)
    return value if isinstance(value, dict) else {}
