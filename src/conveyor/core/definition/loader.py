"""Loader canônico da definição de pipeline (YAML/JSON).

Notas:
- YAML é preferencial, JSON é alternativo.
- O formato é inferido pela extensão do arquivo.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from .errors import (
    DefinitionFileNotFoundError,
    DefinitionParseError,
    UnsupportedDefinitionFormatError,
)


def load_definition(*, path: Union[str, Path]) -> Dict[str, Any]:
    """Carrega a definição bruta a partir de YAML/JSON.

    Args:
        path: caminho para o arquivo de definição.

    Raises:
        DefinitionFileNotFoundError: se o arquivo não existir.
        UnsupportedDefinitionFormatError: se a extensão não for suportada.
        DefinitionParseError: se o parsing falhar ou a raiz não for um mapping.
    """
    if not path or not str(path).strip():
        raise DefinitionFileNotFoundError("definition path is required")

    p = Path(path)
    if not p.exists():
        raise DefinitionFileNotFoundError(f"definition file not found: {p}")

    suffix = p.suffix.lower()
    if suffix not in {".yml", ".yaml", ".json"}:
        raise UnsupportedDefinitionFormatError(f"unsupported definition format: {suffix}")

    raw = p.read_text(encoding="utf-8")
    try:
        if suffix == ".json":
            data = json.loads(raw)
        else:
            data = yaml.safe_load(raw)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise DefinitionParseError(str(e) or "failed to parse definition") from e

    if data is None:
        # YAML vazio -> None
        raise DefinitionParseError("definition file is empty")

    if not isinstance(data, dict):
        raise DefinitionParseError("definition root must be a mapping/dict")

    return data
