"""Hashing canônico da definição de pipeline.

O hash da definição vai para o Manifest e permite detectar divergência
entre runs. Calculado a partir de JSON canônico (sort_keys, separators).
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict


def compute_definition_hash(definition: Dict[str, Any]) -> str:
    """Computa SHA-256 da definição bruta em formato canônico."""
    canonical = json.dumps(definition, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
