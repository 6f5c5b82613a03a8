"""
Conveyor — Canonical Exceptions (v1)

Este módulo define exceções tipadas internas do Conveyor.

Objetivo:
- Permitir que Stages/Engine levantem exceções semânticas tipadas
- Facilitar o mapeamento determinístico para ConveyorErrorPayload
- Evitar RuntimeError genérico em falhas de ferramentas externas

Regras:
- Exceções carregam apenas dados estruturados (serializáveis) em `details`.
- O código estável do erro vem do atributo de classe `code`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional

from .errors import (
    AGENT_NOT_FOUND,
    COMMAND_FAILED,
    COMMAND_TIMEOUT,
    ENGINE_CONFIGURATION_ERROR,
    ENGINE_EXECUTION_ERROR,
    HEALTH_CHECK_FAILED,
    STASH_EMPTY,
    STASH_INTEGRITY_ERROR,
    STASH_NOT_FOUND,
    ConveyorErrorPayload,
)


@dataclass(eq=False)
class ConveyorException(Exception):
    """Base class para exceções internas do Conveyor.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Não embedar stack trace em payloads de erro
    - Mensagem deve ser curta e humana
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None
    decision_required: bool = False

    code: ClassVar[str] = ENGINE_EXECUTION_ERROR

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> ConveyorErrorPayload:
        return ConveyorErrorPayload(
            type=self.code,
            message=self.message,
            details=dict(self.details or {}),
            hint=self.hint,
            decision_required=bool(self.decision_required),
        )


# ---------------------------------------------------------------------------
# Ferramentas externas
# ---------------------------------------------------------------------------

class CommandError(ConveyorException):
    """Comando externo terminou com exit code diferente de zero."""

    code = COMMAND_FAILED

    @property
    def returncode(self) -> int:
        return int(self.details.get("returncode", -1))


class CommandTimeoutError(CommandError):
    """Comando externo excedeu o tempo limite configurado."""

    code = COMMAND_TIMEOUT


# ---------------------------------------------------------------------------
# Relay de artefatos
# ---------------------------------------------------------------------------

class StashError(ConveyorException):
    """Erro base do relay de artefatos."""


class StashNotFoundError(StashError):
    """Nenhum stash com o nome solicitado existe na run."""

    code = STASH_NOT_FOUND


class StashIntegrityError(StashError):
    """Arquivo do stash corrompido, adulterado ou com membros inseguros."""

    code = STASH_INTEGRITY_ERROR


class EmptyStashError(StashError):
    """Os padrões de inclusão não selecionaram nenhum arquivo."""

    code = STASH_EMPTY


# ---------------------------------------------------------------------------
# Agentes / Verificação / Engine
# ---------------------------------------------------------------------------

class AgentNotFoundError(ConveyorException):
    """Nenhum agente declarado atende ao label solicitado."""

    code = AGENT_NOT_FOUND


class HealthCheckFailedError(ConveyorException):
    """Um ou mais serviços não ficaram saudáveis após o retry limitado."""

    code = HEALTH_CHECK_FAILED


class StageConfigurationError(ConveyorException):
    """Opções inválidas ou inconsistentes declaradas para um Stage."""

    code = ENGINE_CONFIGURATION_ERROR
