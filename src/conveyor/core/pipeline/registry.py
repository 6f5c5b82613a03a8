# src/conveyor/core/pipeline/registry.py
"""
Registro estrutural de Stages do pipeline.

O registry atua como uma camada de proteção antecipada, garantindo que:
    - cada Stage possua um identificador válido
    - não existam identificadores duplicados
    - a ordem de declaração dos Stages seja preservada explicitamente

Limites explícitos:
    - Não planeja execução (não é DAG planner)
    - Não executa pipeline
    - Não resolve dependências nem agentes
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .stage import Stage


class DuplicateStageIdError(ValueError):
    """
    Exceção levantada quando ocorre duplicidade de identificador de Stage.

    A duplicidade é tratada como erro fatal de definição e é detectada no
    momento do registro, antes de qualquer execução.
    """


@dataclass
class StageRegistry:
    """
    Registro canônico de Stages para validação estrutural pré-execução.

    Invariantes:
        - Cada `stage.id` é único no registry
        - A lista de Stages reflete exatamente a ordem de registro
    """

    _stages: Dict[str, Stage] = field(default_factory=dict, init=False, repr=False)
    _order: List[str] = field(default_factory=list, init=False, repr=False)

    def add(self, stage: Stage) -> None:
        stage_id = getattr(stage, "id", None)
        if not isinstance(stage_id, str) or not stage_id.strip():
            raise ValueError("stage.id must be a non-empty string")

        if stage_id in self._stages:
            raise DuplicateStageIdError(f"Duplicate stage id: {stage_id}")

        self._stages[stage_id] = stage
        self._order.append(stage_id)

    def extend(self, stages: Iterable[Stage]) -> None:
        for stage in stages:
            self.add(stage)

    def get(self, stage_id: str) -> Stage:
        return self._stages[stage_id]

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._stages

    def __len__(self) -> int:
        return len(self._order)

    def list(self) -> List[Stage]:
        return [self._stages[sid] for sid in self._order]
