# src/conveyor/runner.py
"""
Runner canônico do Conveyor.

Monta e executa uma run completa a partir de arquivos:

    config (defaults + local) ─┐
    definição do pipeline ─────┼─> Stages + post ─> Engine ─> RunResult
    build number ──────────────┘        │
                                        └─> Manifest + events.jsonl

Layout do diretório da run (`<run.root>/<build_number>/`):
    - agents/<agente>/      workspace isolado de cada agente
    - stashes/              relay de artefatos (tar.gz + sidecar JSON)
    - logs/<stage>.log      saída combinada dos comandos de cada Stage
    - diagnostics/          coleta best-effort (collect_logs)
    - manifest.json         Manifest v1 (sempre persistido, inclusive em falha)
    - events.jsonl          log estruturado do RunContext
    - result.json           RunResult serializado

Erros de configuração/definição são levantados antes de criar o diretório
da run; falhas de Stages nunca são levantadas (fazem parte do RunResult).
"""

from __future__ import annotations

import json
import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import conveyor
from conveyor.core.agents import AgentPool
from conveyor.core.config import compute_config_hash, load_config, section
from conveyor.core.definition import (
    DefinitionValidationError,
    PipelineDefinition,
    build_post,
    build_stages,
    compute_definition_hash,
    load_definition,
    resolve_environment,
    validate_definition,
)
from conveyor.core.engine import Engine, RunResult, plan_waves
from conveyor.core.exceptions import AgentNotFoundError
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.stage import Stage
from conveyor.core.pipeline.types import StageStatus
from conveyor.core.traceability import (
    RunManifest,
    add_event,
    create_manifest,
    run_finished,
    save_manifest,
)
from conveyor.persistence import StashStore
from conveyor.stages import STAGE_TYPES


PathLike = Union[str, Path]
DEFAULT_RUN_ROOT = ".conveyor/runs"
_RUN_DIR_PATTERN = re.compile(r"^(\d+)(?:-\d+)?$")


@dataclass(frozen=True)
class PipelinePlan:
    """Resultado da preparação (sem execução): config, definição e Stages."""

    config: Dict[str, Any]
    raw_definition: Dict[str, Any]
    definition: PipelineDefinition
    stages: List[Stage]
    post: Dict[str, List[Stage]]

    def waves(self) -> List[List[Stage]]:
        return plan_waves(self.stages)


@dataclass(frozen=True)
class PipelineRun:
    """Run concluída: diretório, resultado agregado e Manifest final."""

    run_dir: Path
    result: RunResult
    manifest: RunManifest
    build_number: int

    @property
    def ok(self) -> bool:
        return self.result.ok


def next_build_number(root: Path) -> int:
    """Próximo inteiro após o maior diretório numérico sob `root` (1 se vazio)."""
    highest = 0
    if root.exists():
        for p in root.iterdir():
            m = _RUN_DIR_PATTERN.match(p.name)
            if p.is_dir() and m:
                highest = max(highest, int(m.group(1)))
    return highest + 1


def resolve_build_number(
    explicit: Optional[int],
    *,
    root: Path,
    environ: Mapping[str, str],
) -> int:
    """Argumento explícito > variável `BUILD_NUMBER` > próximo número sob `root`."""
    if explicit is not None:
        number = int(explicit)
    elif str(environ.get("BUILD_NUMBER", "")).strip():
        raw = str(environ["BUILD_NUMBER"]).strip()
        if not raw.isdigit():
            raise DefinitionValidationError(f"BUILD_NUMBER must be a non-negative integer, got {raw!r}")
        number = int(raw)
    else:
        number = next_build_number(root)
    if number < 0:
        raise DefinitionValidationError("build number must be >= 0")
    return number


def _allocate_run_dir(root: Path, build_number: int) -> Path:
    candidate = root / str(build_number)
    n = 1
    while candidate.exists():
        n += 1
        candidate = root / f"{build_number}-{n}"
    candidate.mkdir(parents=True)
    return candidate


def prepare_pipeline(
    definition_path: PathLike,
    defaults_path: PathLike,
    local_path: Optional[PathLike] = None,
    *,
    stage_types: Optional[Mapping[str, Any]] = None,
) -> PipelinePlan:
    """
    Carrega config e definição, valida a estrutura e materializa os Stages.

    Raises:
        ConfigError: config ausente, inválida ou com conflito de tipos.
        DefinitionError: definição ausente, inválida, tipo de Stage desconhecido,
            grafo inválido (dependência desconhecida, ciclo) ou agente inexistente.
    """
    config = load_config(
        defaults_path=str(defaults_path),
        local_path=str(local_path) if local_path is not None else None,
    )
    raw = load_definition(path=definition_path)
    definition = validate_definition(raw)

    catalog = stage_types if stage_types is not None else STAGE_TYPES
    stages = build_stages(definition, catalog)
    post = build_post(definition, catalog)

    try:
        plan_waves(stages)
    except ValueError as e:
        raise DefinitionValidationError(str(e)) from e

    pool = AgentPool.from_definition(definition.agents, root=Path("."))
    try:
        pool.validate(stages)
        for handlers in post.values():
            pool.validate(handlers)
    except AgentNotFoundError as e:
        raise DefinitionValidationError(f"stage '{e.details.get('stage')}': {e.message}") from e

    return PipelinePlan(config=config, raw_definition=raw, definition=definition, stages=stages, post=post)


def run_pipeline(
    definition_path: PathLike,
    defaults_path: PathLike,
    local_path: Optional[PathLike] = None,
    build_number: Optional[int] = None,
    run_id: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    stage_types: Optional[Mapping[str, Any]] = None,
) -> PipelineRun:
    """
    Executa o pipeline declarado em `definition_path`.

    Args:
        definition_path: arquivo YAML/JSON da definição.
        defaults_path: config de defaults (obrigatória).
        local_path: overrides locais (opcional; ausente → ignorado).
        build_number: número do build (tag das imagens); ver `resolve_build_number`.
        run_id: identificador da run (padrão: `<nome>-<build>-<hex>`).
        environ: ambiente do processo (padrão `os.environ`).
        stage_types: catálogo de tipos (padrão `conveyor.stages.STAGE_TYPES`).

    Returns:
        PipelineRun: sempre retornado quando a run chega a executar,
        inclusive em falha de Stages.
    """
    environ = os.environ if environ is None else environ
    plan = prepare_pipeline(definition_path, defaults_path, local_path, stage_types=stage_types)
    config = plan.config
    definition = plan.definition

    root = Path(str(section(config, "run").get("root") or DEFAULT_RUN_ROOT)).expanduser()
    number = resolve_build_number(build_number, root=root, environ=environ)
    env = resolve_environment(
        definition.environment,
        section(config, "environment"),
        build_number=number,
        process_env=environ,
    )

    run_dir = _allocate_run_dir(root, number).resolve()
    started_at = datetime.now(timezone.utc)
    run_id = run_id or f"{definition.name}-{number}-{uuid.uuid4().hex[:8]}"

    manifest = create_manifest(
        run_id=run_id,
        started_at=started_at,
        conveyor_version=conveyor.__version__,
        config_hash=compute_config_hash(config),
        definition_hash=compute_definition_hash(plan.raw_definition),
        build_number=number,
    )
    add_event(manifest, event_type="run_started", ts=started_at, payload={"pipeline": definition.name})

    ctx = RunContext(
        run_id=run_id,
        created_at=started_at,
        config=config,
        definition=definition.to_dict(),
        env=env,
        meta={
            "run_dir": str(run_dir),
            "build_number": number,
            "pipeline": definition.name,
            "definition_path": str(definition_path),
        },
        manifest=manifest,
        stash_store=StashStore(run_dir=run_dir),
    )
    agents = AgentPool.from_definition(definition.agents, root=run_dir / "agents")
    ctx.log(stage_id="run", level="info", message="run started", build_number=number, agents=agents.names())

    result: Optional[RunResult] = None
    try:
        result = Engine(stages=plan.stages, ctx=ctx, agents=agents, post=plan.post).run()
    finally:
        status = StageStatus(result.status).value if result is not None else StageStatus.FAILED.value
        ctx.log(stage_id="run", level="info" if status == "success" else "error", message="run finished", status=status)
        run_finished(manifest, status=status, ts=datetime.now(timezone.utc))
        save_manifest(manifest, run_dir / "manifest.json")
        ctx.save_events(run_dir / "events.jsonl")
        if result is not None:
            (run_dir / "result.json").write_text(
                json.dumps(result.to_dict(), ensure_ascii=False, indent=2, sort_keys=True, default=str),
                encoding="utf-8",
            )

    return PipelineRun(run_dir=run_dir, result=result, manifest=manifest, build_number=number)


def describe_waves(plan: PipelinePlan) -> List[Tuple[int, List[Dict[str, Any]]]]:
    """Resumo legível das ondas: `(índice, [{id, type, agent, depends_on}])`."""
    by_id = {s.id: s for s in plan.definition.stages}
    out: List[Tuple[int, List[Dict[str, Any]]]] = []
    for i, wave in enumerate(plan.waves()):
        out.append((i, [
            {
                "id": s.id,
                "type": by_id[s.id].type,
                "agent": s.agent,
                "depends_on": list(s.depends_on),
            }
            for s in wave
        ]))
    return out
