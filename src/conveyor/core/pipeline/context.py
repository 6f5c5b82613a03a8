# src/conveyor/core/pipeline/context.py
"""
Contexto de execução compartilhado do pipeline.

Este módulo define o `RunContext`, a estrutura canônica compartilhada por
todos os Stages de uma run. Como Stages de uma mesma onda executam em
paralelo (threads distintas), toda mutação do contexto é serializada por
um lock interno.

O RunContext atua como o único meio permitido de:
    - troca indireta de informações entre Stages (artifact store)
    - registro de logs estruturados de execução
    - coleta de warnings não fatais associados a Stages
    - acesso ao ambiente resolvido (variáveis) e ao relay de stashes

Invariantes:
    - Logs sempre incluem `run_id` e `stage_id`
    - Warnings são agrupados por `stage_id`
    - Mutações concorrentes nunca perdem eventos

Limites explícitos:
    - Não executa Stages
    - Não planeja nem coordena execução
    - Não registra eventos no Manifest (responsabilidade do Engine)
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


@dataclass
class RunContext:
    """
    Contexto de execução compartilhado de uma run do pipeline.

    Campos canônicos:
    - run_id: identificador único da execução
    - created_at: timestamp UTC de criação do contexto
    - config: configuração efetiva (defaults + local deep-merge)
    - definition: definição de pipeline resolvida (dict)
    - env: variáveis de ambiente resolvidas para comandos (inclui BUILD_NUMBER)
    - meta: metadados de execução (run_dir, build_number, ...)
    - manifest: Manifest da run, quando a rastreabilidade está ativa
    - stash_store: relay de artefatos entre agentes
    """

    run_id: str
    created_at: datetime
    config: Dict[str, Any]
    definition: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    manifest: Any = None
    stash_store: Any = None

    _artifacts: Dict[str, Any] = field(default_factory=dict, init=False, repr=False)
    events: List[Dict[str, Any]] = field(default_factory=list, init=False)
    warnings: Dict[str, List[str]] = field(default_factory=dict, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    # -----------------------------
    # Paths
    # -----------------------------
    @property
    def run_dir(self) -> Path:
        run_dir = self.meta.get("run_dir")
        if not run_dir:
            raise KeyError("run_dir")
        return Path(run_dir)

    def stage_log_path(self, stage_id: str) -> Path:
        return self.run_dir / "logs" / f"{stage_id}.log"

    # -----------------------------
    # Environment
    # -----------------------------
    def stage_env(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(self.env)
        if extra:
            env.update({str(k): str(v) for k, v in extra.items()})
        return env

    # -----------------------------
    # Artifact store
    # -----------------------------
    def set_artifact(self, key: str, value: Any) -> None:
        with self._lock:
            self._artifacts[key] = value

    def has_artifact(self, key: str) -> bool:
        with self._lock:
            return key in self._artifacts

    def get_artifact(self, key: str) -> Any:
        with self._lock:
            if key not in self._artifacts:
                raise KeyError(key)
            return self._artifacts[key]

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, stage_id: str, level: str, message: str, **extra: Any) -> None:
        event = {
            "run_id": self.run_id,
            "stage_id": stage_id,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

    def add_warning(self, *, stage_id: str, message: str) -> None:
        with self._lock:
            self.warnings.setdefault(stage_id, []).append(message)

    def warnings_for(self, stage_id: str) -> List[str]:
        with self._lock:
            return list(self.warnings.get(stage_id, []))

    def save_events(self, path: Path) -> None:
        """Persiste o log estruturado como JSON Lines (um evento por linha)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            lines = [json.dumps(ev, ensure_ascii=False, sort_keys=True, default=str) for ev in self.events]
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
