# src/conveyor/core/pipeline/__init__.py
"""
# Pipeline Core — Conveyor

Este pacote define os **contratos canônicos** e as **estruturas fundamentais**
que compõem um pipeline no Conveyor.

Um pipeline é modelado como um **DAG explícito de Stages**, onde:
- cada Stage declara identidade, tipo semântico, agente e dependências
- a execução é coordenada exclusivamente pelo Engine
- o estado compartilhado é mediado pelo `RunContext`

## Componentes

- **types**: `StageStatus`, `StageKind`, `StageResult`
- **stage**: `Stage` (Protocol)
- **context**: `RunContext` (artefatos, logs, warnings, ambiente)
- **registry**: `StageRegistry` (unicidade de `stage.id`)
"""

from .context import RunContext
from .registry import DuplicateStageIdError, StageRegistry
from .stage import Stage
from .types import StageKind, StageResult, StageStatus

__all__ = [
    "DuplicateStageIdError",
    "RunContext",
    "Stage",
    "StageKind",
    "StageRegistry",
    "StageResult",
    "StageStatus",
]
