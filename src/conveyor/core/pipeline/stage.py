# src/conveyor/core/pipeline/stage.py
"""
Contrato canônico de Stage do Conveyor.

Um Stage é a menor unidade executável do pipeline: um bloco de trabalho
despachado para um único agente, que delega o trabalho real a
ferramentas externas e produz um StageResult imutável.

Princípios fundamentais:
    - Stages não conhecem o Engine nem o planner
    - Stages não controlam ordem de execução nem paralelismo
    - Comunicação entre Stages é mediada pelo RunContext e pelo relay de stashes
    - Conformidade é garantida por duck typing (@runtime_checkable)

Invariantes:
    - Cada Stage possui um `id` único
    - Cada Stage declara explicitamente suas dependências
    - O método `run` é chamado no máximo uma vez por execução
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Protocol, runtime_checkable

from .context import RunContext
from .types import StageKind, StageResult

if TYPE_CHECKING:
    from conveyor.core.agents import Agent


@runtime_checkable
class Stage(Protocol):
    """
    Contrato canônico de um Stage do Conveyor.

    Atributos obrigatórios:
        - id: identificador único e estável do Stage
        - kind: classificação semântica do Stage (`StageKind`)
        - depends_on: lista de `stage_id` dos quais depende
        - agent: label do agente onde o Stage deve executar (None → primeiro agente)

    Atributos opcionais reconhecidos pelo Engine:
        - when_exists: caminho relativo ao workspace do agente; se ausente,
          o Stage é marcado SKIPPED sem executar

    Limites explícitos:
        - Não define retry (exceto health checks, que têm retry próprio)
        - Não registra eventos no Manifest diretamente
        - Não decide políticas de execução (fail-fast, skip)
    """
    id: str
    kind: StageKind
    depends_on: List[str]
    agent: Optional[str]

    def run(self, ctx: RunContext, agent: "Agent") -> StageResult:
        """Executa o Stage uma única vez no workspace do agente."""
        ...
