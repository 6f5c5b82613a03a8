# src/conveyor/core/agents/pool.py
"""
Agentes de execução e resolução de labels.

Um agente é um host designado para executar Stages. Nesta implementação
cada agente é materializado como um workspace isolado no disco
(`<root>/<nome do agente>`): agentes nunca compartilham diretórios, o que
obriga a transferência explícita de artefatos via stash/unstash, como
entre hosts reais.

Decisões arquiteturais:
    - Labels são resolvidos por ordem de declaração (primeiro match vence)
    - O nome do agente também funciona como label
    - Cada agente limita Stages concorrentes ao seu número de executors
    - Labels desconhecidos são detectados antes de qualquer execução

Limites explícitos:
    - Não agenda agentes remotos
    - Não balanceia carga entre agentes com o mesmo label
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from conveyor.core.exceptions import AgentNotFoundError


DEFAULT_AGENT_NAME = "local"


@dataclass
class Agent:
    """Host de execução com workspace próprio."""

    name: str
    labels: List[str] = field(default_factory=list)
    executors: int = 1
    workspace: Optional[Path] = None

    def matches(self, label: str) -> bool:
        return label == self.name or label in self.labels

    def ensure_workspace(self) -> Path:
        if self.workspace is None:
            raise ValueError(f"agent '{self.name}' has no workspace")
        self.workspace.mkdir(parents=True, exist_ok=True)
        return self.workspace

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "labels": list(self.labels),
            "executors": self.executors,
            "workspace": str(self.workspace) if self.workspace else None,
        }


class AgentPool:
    """
    Conjunto de agentes declarados para uma run.

    Invariantes:
        - Nomes de agentes são únicos
        - Cada agente possui um workspace distinto sob `root`
        - `slot(agent)` nunca permite mais que `executors` Stages simultâneos
    """

    def __init__(self, agents: Sequence[Agent]):
        if not agents:
            raise ValueError("at least one agent must be declared")
        names = [a.name for a in agents]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate agent names: {', '.join(dupes)}")
        self._agents: List[Agent] = list(agents)
        self._slots: Dict[str, threading.BoundedSemaphore] = {
            a.name: threading.BoundedSemaphore(max(1, int(a.executors))) for a in self._agents
        }

    @classmethod
    def from_definition(cls, agents: Iterable[Mapping[str, Any]], *, root: Path) -> "AgentPool":
        """Cria o pool a partir da seção `agents` da definição (vazia → agente `local`)."""
        root = Path(root)
        built: List[Agent] = []
        for spec in agents or []:
            name = str(spec["name"])
            built.append(
                Agent(
                    name=name,
                    labels=[str(x) for x in (spec.get("labels") or [])],
                    executors=int(spec.get("executors", 1) or 1),
                    workspace=root / name,
                )
            )
        if not built:
            built.append(Agent(name=DEFAULT_AGENT_NAME, workspace=root / DEFAULT_AGENT_NAME))
        return cls(built)

    @property
    def agents(self) -> List[Agent]:
        return list(self._agents)

    def names(self) -> List[str]:
        return [a.name for a in self._agents]

    def resolve(self, label: Optional[str]) -> Agent:
        if label is None:
            return self._agents[0]
        for agent in self._agents:
            if agent.matches(label):
                return agent
        raise AgentNotFoundError(
            message=f"No agent matches label '{label}'",
            details={"label": label, "agents": self.names()},
            hint="Declare um agente com esse nome ou label na seção `agents` da definição.",
        )

    def validate(self, stages: Iterable[Any]) -> None:
        """Garante que todo Stage aponta para um agente existente."""
        for stage in stages:
            try:
                self.resolve(getattr(stage, "agent", None))
            except AgentNotFoundError as e:
                e.details["stage"] = getattr(stage, "id", None)
                raise

    @contextmanager
    def slot(self, agent: Agent) -> Iterator[Agent]:
        sem = self._slots[agent.name]
        sem.acquire()
        try:
            agent.ensure_workspace()
            yield agent
        finally:
            sem.release()
