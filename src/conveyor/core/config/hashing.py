# src/conveyor/core/config/hashing.py
"""
Hashing canônico de documentos (configuração e definição de pipeline).

O hash representa a identidade estrutural do documento resolvido e é
registrado no Manifest de cada run, permitindo comparar duas execuções
sem comparar os arquivos de origem.

Política de hashing (v1):
    - Serialização JSON canônica (chaves ordenadas, separadores compactos)
    - Codificação UTF-8
    - SHA-256
"""


import hashlib
import json
from typing import Any, Dict


def compute_config_hash(config: Dict[str, Any]) -> str:
    """
    Gera um hash determinístico de um documento resolvido.

    Invariantes:
        - O valor retornado é uma string hexadecimal de 64 caracteres
        - Documentos estruturalmente equivalentes produzem o mesmo hash
        - Nenhuma mutação ocorre sobre o input

    Args:
        config (Dict[str, Any]): Configuração (ou definição) resolvida.

    Returns:
        str: Hash SHA-256 hexadecimal.

    Raises:
        TypeError: Se o objeto fornecido não for um dicionário.
    """

    if not isinstance(config, dict):
        raise TypeError(
            f"Config para hashing deve ser dict, recebido: {type(config).__name__}"
        )

    canonical_json = json.dumps(
        config,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )

    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
