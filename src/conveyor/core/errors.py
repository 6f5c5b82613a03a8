"""
Conveyor — Canonical Error Structures (v1)

Este módulo define o padrão canônico de erros do Conveyor.
Erros de Stage fazem parte do resultado da run e devem ser:

- explícitos
- serializáveis
- rastreáveis
- acionáveis

O payload é gravado em `StageResult.payload["error"]` e no Manifest.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConveyorErrorPayload:
    """
    Payload canônico de erro do Conveyor.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador (onde corrigir)
    - decision_required: indica se a run exige decisão humana antes de reexecutar
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None
    decision_required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

# Ferramentas externas
COMMAND_FAILED = "COMMAND_FAILED"
COMMAND_TIMEOUT = "COMMAND_TIMEOUT"

# Relay de artefatos
STASH_NOT_FOUND = "STASH_NOT_FOUND"
STASH_INTEGRITY_ERROR = "STASH_INTEGRITY_ERROR"
STASH_EMPTY = "STASH_EMPTY"

# Agentes
AGENT_NOT_FOUND = "AGENT_NOT_FOUND"

# Verificação pós-deploy
HEALTH_CHECK_FAILED = "HEALTH_CHECK_FAILED"

# Engine / Execução
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"
ENGINE_CONFIGURATION_ERROR = "ENGINE_CONFIGURATION_ERROR"


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------

def engine_execution_error(
    *,
    stage: Optional[str] = None,
    exc_type: Optional[str] = None,
    exc_message: Optional[str] = None,
    hint: str = "Verifique o log técnico e a configuração do pipeline. Nenhum fallback é aplicado automaticamente.",
) -> ConveyorErrorPayload:
    return ConveyorErrorPayload(
        type=ENGINE_EXECUTION_ERROR,
        message=exc_message or "Falha inesperada durante a execução do pipeline",
        details={
            "stage": stage,
            "exc_type": exc_type,
            "exc_message": exc_message,
        },
        hint=hint,
        decision_required=False,
    )


def engine_configuration_error(
    *,
    message: str = "Configuração inválida para execução do pipeline",
    details: Optional[Dict[str, Any]] = None,
    hint: str = "Revise a configuração e a definição do pipeline antes de reexecutar.",
) -> ConveyorErrorPayload:
    return ConveyorErrorPayload(
        type=ENGINE_CONFIGURATION_ERROR,
        message=message,
        details=details or {},
        hint=hint,
        decision_required=False,
    )
