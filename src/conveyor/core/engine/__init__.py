# src/conveyor/core/engine/__init__.py
"""
Engine do Conveyor.

Componentes principais:
    - planner → ordenação topológica determinística e ondas paralelas
    - engine  → despacho de Stages aos agentes, junções, fail-fast e handlers `post`

Invariantes:
    - Stages só executam após suas dependências
    - Cada Stage executa no máximo uma vez por run
    - O resultado reflete explicitamente o estado final de cada Stage
"""

from .engine import (
    POST_CONDITIONS,
    SKIPPED_ABORTED,
    SKIPPED_BY_CONFIG,
    SKIPPED_CONDITION,
    SKIPPED_FAILED_DEPENDENCY,
    Engine,
    RunResult,
)
from .planner import CycleDetectedError, UnknownDependencyError, plan_execution, plan_waves

__all__ = [
    "CycleDetectedError",
    "Engine",
    "POST_CONDITIONS",
    "RunResult",
    "SKIPPED_ABORTED",
    "SKIPPED_BY_CONFIG",
    "SKIPPED_CONDITION",
    "SKIPPED_FAILED_DEPENDENCY",
    "UnknownDependencyError",
    "plan_execution",
    "plan_waves",
]
