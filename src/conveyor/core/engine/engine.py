# src/conveyor/core/engine/engine.py
"""
Engine de execução do pipeline do Conveyor.

O Engine despacha cada Stage para o agente designado, em ondas:

    - todos os Stages de uma onda executam em paralelo (fan-out), limitados
      por `engine.max_parallel` e pelos executors de cada agente
    - o fim da onda é o ponto de junção (fan-in) antes da próxima
    - não há memória compartilhada entre Stages; artefatos trafegam pelo
      relay de stashes e o estado comum pelo RunContext (thread-safe)

Políticas de execução:
    - `stages.<id>.enabled: false` → SKIPPED ("skipped by config"); dependentes executam
    - dependência FAILED ou não executada → SKIPPED ("skipped due to failed dependency")
    - `when_exists` ausente no workspace do agente → SKIPPED ("condition not met")
    - exceção no Stage → FAILED com ConveyorErrorPayload em `payload["error"]`
    - fail-fast: após uma onda com falha, o restante vira SKIPPED ("pipeline aborted")
    - handlers `post` executam após a run (success/failure e depois always);
      falhas em handlers viram warnings e nunca alteram o status da run

Correção (StageResult frozen dataclass):
    - O Engine **não** muta StageResult; enriquecimentos usam `dataclasses.replace`.
"""

from __future__ import annotations

import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from conveyor.core.agents import Agent, AgentPool
from conveyor.core.errors import (
    ConveyorErrorPayload,
    engine_configuration_error,
    engine_execution_error,
)
from conveyor.core.exceptions import ConveyorException
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.stage import Stage
from conveyor.core.pipeline.types import StageKind, StageResult, StageStatus
from conveyor.core.shell import UnresolvedVariableError
from conveyor.core.traceability import manifest as mf

from .planner import plan_waves


POST_CONDITIONS = ("success", "failure", "always")

SKIPPED_BY_CONFIG = "skipped by config"
SKIPPED_FAILED_DEPENDENCY = "skipped due to failed dependency"
SKIPPED_CONDITION = "condition not met"
SKIPPED_ABORTED = "pipeline aborted"

# motivos de skip que bloqueiam dependentes
_BLOCKING_SKIPS = (SKIPPED_FAILED_DEPENDENCY, SKIPPED_ABORTED)


@dataclass(frozen=True)
class RunResult:
    """Resultado agregado de uma run (RunResult v1)."""

    status: StageStatus
    stages: Dict[str, StageResult] = field(default_factory=dict)
    post: Dict[str, StageResult] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": StageStatus(self.status).value,
            "stages": {k: v.to_dict() for k, v in self.stages.items()},
            "post": {k: v.to_dict() for k, v in self.post.items()},
            "warnings": list(self.warnings),
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Engine:
    """Engine canônico do Conveyor (planner em ondas + executor paralelo)."""

    def __init__(
        self,
        *,
        stages: Sequence[Stage],
        ctx: RunContext,
        agents: Optional[AgentPool] = None,
        post: Optional[Mapping[str, Sequence[Stage]]] = None,
    ):
        self.stages: List[Stage] = list(stages)
        self.ctx: RunContext = ctx
        self.agents: AgentPool = agents or self._default_pool()
        self.post: Dict[str, List[Stage]] = {k: list((post or {}).get(k, []) or []) for k in POST_CONDITIONS}
        unknown = sorted(set(post or {}) - set(POST_CONDITIONS))
        if unknown:
            raise ValueError(f"Unknown post conditions: {', '.join(unknown)}")
        self._manifest_lock = threading.Lock()

    def _default_pool(self) -> AgentPool:
        run_dir = self.ctx.meta.get("run_dir")
        root = Path(run_dir) / "agents" if run_dir else Path(tempfile.mkdtemp(prefix="conveyor-"))
        return AgentPool.from_definition([], root=root)

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------
    def _is_enabled(self, stage_id: str) -> bool:
        stages_cfg = (self.ctx.config or {}).get("stages", {}) or {}
        stage_cfg = stages_cfg.get(stage_id, {}) or {}
        return bool(stage_cfg.get("enabled", True))

    def _engine_cfg(self) -> Dict[str, Any]:
        return (self.ctx.config or {}).get("engine", {}) or {}

    def _fail_fast(self) -> bool:
        return bool(self._engine_cfg().get("fail_fast", True))

    def _max_parallel(self) -> int:
        return max(1, int(self._engine_cfg().get("max_parallel", 4) or 1))

    # ------------------------------------------------------------------
    # Manifest (serializado: Stages de uma onda terminam em paralelo)
    # ------------------------------------------------------------------
    def _record(self, fn: Any, **kwargs: Any) -> None:
        manifest = self.ctx.manifest
        if manifest is None:
            return
        with self._manifest_lock:
            fn(manifest, ts=_now(), **kwargs)

    # ------------------------------------------------------------------
    # Erros: exceção -> ConveyorErrorPayload
    # ------------------------------------------------------------------
    def _exception_to_error(self, exc: Exception, *, stage_id: str) -> ConveyorErrorPayload:
        if isinstance(exc, ConveyorException):
            payload = exc.to_payload()
            details = dict(payload.details)
            details.setdefault("stage", stage_id)
            return replace(payload, details=details)
        if isinstance(exc, UnresolvedVariableError):
            return engine_configuration_error(
                message=str(exc),
                details={"stage": stage_id, "variable": exc.name},
                hint="Declare a variável em `environment` da definição ou da config.",
            )
        return engine_execution_error(
            stage=stage_id,
            exc_type=exc.__class__.__name__,
            exc_message=str(exc) or None,
        )

    # ------------------------------------------------------------------
    # Resultados
    # ------------------------------------------------------------------
    def _kind(self, stage: Stage) -> StageKind:
        return getattr(stage, "kind", None) or StageKind.DIAGNOSTIC

    def _enrich(self, *, stage: Stage, result: StageResult) -> StageResult:
        """Nova instância com id/kind canônicos e warnings do contexto (sem duplicatas)."""
        merged: List[str] = []
        for msg in list(result.warnings or []) + self.ctx.warnings_for(stage.id):
            if msg not in merged:
                merged.append(msg)
        return replace(
            result,
            stage_id=stage.id,
            kind=getattr(result, "kind", None) or self._kind(stage),
            warnings=merged,
        )

    def _skip(self, stage: Stage, reason: str) -> StageResult:
        self._record(mf.stage_skipped, stage_id=stage.id, kind=StageKind(self._kind(stage)).value, reason=reason)
        self.ctx.log(stage_id=stage.id, level="info", message=reason)
        return StageResult(
            stage_id=stage.id,
            kind=self._kind(stage),
            status=StageStatus.SKIPPED,
            summary=reason,
        )

    def _execute(self, stage: Stage) -> StageResult:
        """Executa um Stage no seu agente; nunca propaga exceções."""
        sid = stage.id
        try:
            agent = self.agents.resolve(getattr(stage, "agent", None))
        except ConveyorException as e:
            return self._failed(stage, e, agent=None)

        with self.agents.slot(agent):
            condition = getattr(stage, "when_exists", None)
            if condition and not (agent.ensure_workspace() / condition).exists():
                return self._skip(stage, SKIPPED_CONDITION)

            self._record(mf.stage_started, stage_id=sid, kind=StageKind(self._kind(stage)).value, agent=agent.name)
            self.ctx.log(stage_id=sid, level="info", message="stage started", agent=agent.name)
            try:
                result = stage.run(self.ctx, agent)
                if not isinstance(result, StageResult):
                    raise TypeError("Stage.run(ctx, agent) must return StageResult")
            except TypeError as e:
                if "must return StageResult" in str(e):
                    error = engine_configuration_error(
                        message="Stage retornou tipo inválido",
                        details={"stage": sid, "expected": "StageResult"},
                        hint="Ajuste o Stage para retornar StageResult",
                    )
                    return self._failed(stage, e, agent=agent, error=error)
                return self._failed(stage, e, agent=agent)
            except Exception as e:
                return self._failed(stage, e, agent=agent)

        enriched = self._enrich(stage=stage, result=result)
        if enriched.status == StageStatus.FAILED:
            error = dict(enriched.payload.get("error") or {"type": "STAGE_FAILED", "message": enriched.summary})
            self._record(mf.stage_failed, stage_id=sid, error=error)
        else:
            self._record(mf.stage_finished, stage_id=sid, result=enriched.to_dict())
        self.ctx.log(stage_id=sid, level="info", message="stage finished", status=StageStatus(enriched.status).value)
        return enriched

    def _failed(
        self,
        stage: Stage,
        exc: Exception,
        *,
        agent: Optional[Agent],
        error: Optional[ConveyorErrorPayload] = None,
    ) -> StageResult:
        error = error or self._exception_to_error(exc, stage_id=stage.id)
        self._record(mf.stage_failed, stage_id=stage.id, error=error.to_dict())
        self.ctx.log(
            stage_id=stage.id,
            level="error",
            message=error.message,
            error_type=error.type,
            agent=agent.name if agent else None,
        )
        return StageResult(
            stage_id=stage.id,
            kind=self._kind(stage),
            status=StageStatus.FAILED,
            summary=error.message,
            warnings=self.ctx.warnings_for(stage.id),
            payload={"error": error.to_dict()},
        )

    # ------------------------------------------------------------------
    # Execução
    # ------------------------------------------------------------------
    def _blocked(self, stage: Stage, results: Mapping[str, StageResult]) -> bool:
        for dep in list(getattr(stage, "depends_on", []) or []):
            r = results.get(dep)
            if r is None or r.status == StageStatus.FAILED:
                return True
            if r.status == StageStatus.SKIPPED and r.summary in _BLOCKING_SKIPS:
                return True
        return False

    def _run_wave(self, runnable: List[Stage]) -> Dict[str, StageResult]:
        if len(runnable) == 1:
            return {runnable[0].id: self._execute(runnable[0])}
        workers = min(self._max_parallel(), len(runnable))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="conveyor-stage") as pool:
            futures = [(s.id, pool.submit(self._execute, s)) for s in runnable]
            return {sid: fut.result() for sid, fut in futures}

    def _run_post(self, status: StageStatus) -> Dict[str, StageResult]:
        conditions = ["success" if status == StageStatus.SUCCESS else "failure", "always"]
        out: Dict[str, StageResult] = {}
        for condition in conditions:
            for stage in self.post[condition]:
                if not self._is_enabled(stage.id):
                    out[stage.id] = self._skip(stage, SKIPPED_BY_CONFIG)
                    continue
                out[stage.id] = self._execute(stage)
        return out

    def run(self) -> RunResult:
        waves = plan_waves(self.stages)
        self.agents.validate(self.stages)
        for handlers in self.post.values():
            self.agents.validate(handlers)

        results: Dict[str, StageResult] = {}
        aborted = False

        for wave in waves:
            runnable: List[Stage] = []
            for stage in wave:
                if aborted:
                    results[stage.id] = self._skip(stage, SKIPPED_ABORTED)
                elif not self._is_enabled(stage.id):
                    results[stage.id] = self._skip(stage, SKIPPED_BY_CONFIG)
                elif self._blocked(stage, results):
                    results[stage.id] = self._skip(stage, SKIPPED_FAILED_DEPENDENCY)
                else:
                    runnable.append(stage)

            if runnable:
                results.update(self._run_wave(runnable))

            wave_failed = any(results[s.id].status == StageStatus.FAILED for s in runnable)
            if wave_failed and self._fail_fast():
                aborted = True

        # ordem de declaração, não de término
        ordered = {s.id: results[s.id] for s in self.stages}
        failed = any(r.status == StageStatus.FAILED for r in ordered.values())
        status = StageStatus.FAILED if failed else StageStatus.SUCCESS

        post = self._run_post(status)
        warnings: List[str] = []
        for sid, r in post.items():
            if r.status == StageStatus.FAILED:
                msg = f"post handler '{sid}' failed: {r.summary}"
                warnings.append(msg)
                self.ctx.add_warning(stage_id=sid, message=msg)

        return RunResult(status=status, stages=ordered, post=post, warnings=warnings)
