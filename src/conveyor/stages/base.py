"""Base comum dos Stages concretos do Conveyor.

Responsabilidades:
- campos canônicos do contrato `Stage` (id, kind, depends_on, agent, when_exists)
- leitura tipada de opções declaradas na definição (`StageSpec.options`)
- execução de comandos no workspace do agente, com log por Stage
- stash/unstash via relay da run

Falhas de ferramentas externas são propagadas como exceções tipadas
(`CommandError`, `StashError`, ...); o Engine as converte em
`ConveyorErrorPayload` e marca o Stage como FAILED.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Sequence

from conveyor.core.agents import Agent
from conveyor.core.config import section
from conveyor.core.definition.schema import StageSpec
from conveyor.core.exceptions import StageConfigurationError
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.types import StageKind, StageResult, StageStatus
from conveyor.core.shell import DEFAULT_SHELL, CommandOutcome, interpolate, run_command
from conveyor.persistence import StashMeta, StashStore


# ---------------------------------------------------------------------------
# Leitura de opções
# ---------------------------------------------------------------------------

def _invalid(spec: StageSpec, message: str) -> StageConfigurationError:
    return StageConfigurationError(
        message=message,
        details={"stage": spec.id, "type": spec.type},
        hint="Revise as opções do Stage na definição do pipeline.",
    )


def opt_str(spec: StageSpec, key: str, default: Optional[str] = None, *, required: bool = False) -> Optional[str]:
    value = spec.options.get(key, default)
    if value is None:
        if required:
            raise _invalid(spec, f"option '{key}' is required")
        return None
    if not isinstance(value, (str, int, float)) or isinstance(value, bool) or not str(value).strip():
        raise _invalid(spec, f"option '{key}' must be a non-empty string")
    return str(value)


def _workspace_path_problem(value: str, *, allow_root: bool) -> Optional[str]:
    path = PurePosixPath(value.replace("\\", "/"))
    if not value.strip() or path.is_absolute() or ".." in path.parts:
        return "must be a relative path inside the agent workspace"
    if not allow_root and not path.parts:
        return "must name a subdirectory of the agent workspace"
    return None


def opt_workspace_path(spec: StageSpec, key: str, default: str, *, allow_root: bool = False) -> str:
    """Caminho relativo ao workspace do agente; absolutos e `..` são rejeitados."""
    value = str(opt_str(spec, key, default))
    problem = _workspace_path_problem(value, allow_root=allow_root)
    if problem:
        raise _invalid(spec, f"option '{key}' {problem}: {value}")
    return value


def opt_bool(spec: StageSpec, key: str, default: bool) -> bool:
    value = spec.options.get(key, default)
    if not isinstance(value, bool):
        raise _invalid(spec, f"option '{key}' must be a boolean")
    return value


def opt_number(spec: StageSpec, key: str, default: Optional[float] = None) -> Optional[float]:
    value = spec.options.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise _invalid(spec, f"option '{key}' must be a non-negative number")
    return value


def opt_str_list(spec: StageSpec, key: str) -> List[str]:
    value = spec.options.get(key) or []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(x, str) and x.strip() for x in value):
        raise _invalid(spec, f"option '{key}' must be a string or a list of strings")
    return list(value)


def opt_env(spec: StageSpec, key: str = "env") -> Dict[str, str]:
    value = spec.options.get(key) or {}
    if not isinstance(value, dict):
        raise _invalid(spec, f"option '{key}' must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def opt_kind(spec: StageSpec, default: StageKind) -> StageKind:
    value = spec.options.get("kind")
    if value is None:
        return default
    try:
        return StageKind(str(value))
    except ValueError as e:
        raise _invalid(spec, f"option 'kind' must be one of {[k.value for k in StageKind]}") from e


def check_unknown_options(spec: StageSpec, allowed: Sequence[str]) -> None:
    unknown = sorted(set(spec.options) - set(allowed))
    if unknown:
        raise _invalid(spec, f"unsupported options: {', '.join(unknown)}")


@dataclass(frozen=True)
class StashSpec:
    """Declaração de stash de um Stage (`stash: [{name, includes, excludes, allow_empty}]`)."""

    name: str
    includes: List[str] = field(default_factory=lambda: ["**"])
    excludes: List[str] = field(default_factory=list)
    allow_empty: bool = False
    use_default_excludes: bool = True
    dir: str = "."


def opt_stashes(spec: StageSpec, key: str = "stash") -> List[StashSpec]:
    raw = spec.options.get(key) or []
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise _invalid(spec, f"option '{key}' must be a list of mappings")
    out: List[StashSpec] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"].strip():
            raise _invalid(spec, f"{key}[{i}].name is required")
        includes = item.get("includes", ["**"])
        excludes = item.get("excludes", [])
        includes = [includes] if isinstance(includes, str) else list(includes or ["**"])
        excludes = [excludes] if isinstance(excludes, str) else list(excludes or [])
        allow_empty = item.get("allow_empty", False)
        use_default = item.get("use_default_excludes", True)
        if not isinstance(allow_empty, bool) or not isinstance(use_default, bool):
            raise _invalid(spec, f"{key}[{i}]: allow_empty/use_default_excludes must be booleans")
        stash_dir = str(item.get("dir", "."))
        problem = _workspace_path_problem(stash_dir, allow_root=True)
        if problem:
            raise _invalid(spec, f"{key}[{i}].dir {problem}: {stash_dir}")
        out.append(StashSpec(
            name=item["name"],
            includes=[str(x) for x in includes],
            excludes=[str(x) for x in excludes],
            allow_empty=allow_empty,
            use_default_excludes=use_default,
            dir=stash_dir,
        ))
    return out


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

@dataclass
class BaseStage:
    """Campos canônicos compartilhados por todos os Stages concretos."""

    id: str
    kind: StageKind = StageKind.BUILD
    depends_on: List[str] = field(default_factory=list)
    agent: Optional[str] = None
    when_exists: Optional[str] = None

    @staticmethod
    def common(spec: StageSpec) -> Dict[str, Any]:
        return {
            "id": spec.id,
            "depends_on": list(spec.depends_on),
            "agent": spec.agent,
            "when_exists": spec.when_exists,
        }

    # -----------------------------
    # Ambiente e comandos
    # -----------------------------
    def expand(self, ctx: RunContext, value: str) -> str:
        """Expande `${NOME}` numa opção contra o ambiente da run."""
        return interpolate(value, ctx.env)

    def workspace_path(self, agent: Agent, relative: str, *, allow_root: bool = True) -> Path:
        """
        Resolve `relative` dentro do workspace do agente.

        Raises:
            StageConfigurationError: caminho que sai do workspace (ou que é o
                próprio workspace quando `allow_root=False`).
        """
        workspace = agent.ensure_workspace().resolve()
        target = (workspace / relative).resolve()
        if target == workspace and allow_root:
            return target
        if workspace not in target.parents:
            raise StageConfigurationError(
                message=f"Path escapes the agent workspace: {relative}",
                details={"stage": self.id, "path": relative, "agent": agent.name},
                hint="Use caminhos relativos ao workspace, sem `..` nem caminhos absolutos.",
            )
        return target

    def log_path(self, ctx: RunContext) -> Optional[Path]:
        try:
            return ctx.stage_log_path(self.id)
        except KeyError:
            return None

    def sh(
        self,
        ctx: RunContext,
        agent: Agent,
        command: str,
        *,
        allow_failure: bool = False,
        env: Optional[Mapping[str, str]] = None,
        secrets: Sequence[str] = (),
        log_path: Optional[Path] = None,
    ) -> CommandOutcome:
        shell_cfg = section(ctx.config, "shell")
        timeout = shell_cfg.get("timeout_seconds")
        outcome = run_command(
            command,
            cwd=agent.ensure_workspace(),
            env=ctx.stage_env(env),
            timeout=float(timeout) if timeout else None,
            log_path=log_path or self.log_path(ctx),
            allow_failure=allow_failure,
            shell=str(shell_cfg.get("executable") or DEFAULT_SHELL),
            secrets=secrets,
        )
        ctx.log(
            stage_id=self.id,
            level="info" if outcome.ok else "warning",
            message="command finished",
            command=outcome.command,
            returncode=outcome.returncode,
            duration_ms=outcome.duration_ms,
        )
        if not outcome.ok:
            ctx.add_warning(
                stage_id=self.id,
                message=f"command exited with {outcome.returncode} (allowed): {outcome.command}",
            )
        return outcome

    # -----------------------------
    # Relay de artefatos
    # -----------------------------
    def _store(self, ctx: RunContext) -> StashStore:
        if ctx.stash_store is None:
            raise StageConfigurationError(
                message="No stash store configured for this run",
                details={"stage": self.id},
                hint="Execute o pipeline via runner (run_pipeline) ou injete ctx.stash_store.",
            )
        return ctx.stash_store

    def unstash(self, ctx: RunContext, agent: Agent, names: Sequence[str]) -> List[StashMeta]:
        metas: List[StashMeta] = []
        for name in names:
            meta = self._store(ctx).unstash(name, agent.ensure_workspace())
            ctx.log(stage_id=self.id, level="info", message="unstashed", stash=name, files=len(meta.files), agent=agent.name)
            metas.append(meta)
        return metas

    def stash(self, ctx: RunContext, agent: Agent, specs: Sequence[StashSpec]) -> List[StashMeta]:
        metas: List[StashMeta] = []
        for s in specs:
            meta = self._store(ctx).stash(
                s.name,
                self.workspace_path(agent, s.dir),
                includes=s.includes,
                excludes=s.excludes,
                allow_empty=s.allow_empty,
                use_default_excludes=s.use_default_excludes,
                agent=agent.name,
                stage_id=self.id,
            )
            ctx.log(stage_id=self.id, level="info", message="stashed", stash=s.name, files=len(meta.files), bytes=meta.bytes)
            metas.append(meta)
        return metas

    # -----------------------------
    # Resultado
    # -----------------------------
    def success(
        self,
        ctx: RunContext,
        summary: str,
        *,
        metrics: Optional[Dict[str, Any]] = None,
        artifacts: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> StageResult:
        arts = dict(artifacts or {})
        path = self.log_path(ctx)
        if path is not None and path.exists():
            arts.setdefault("log", str(path))
        return StageResult(
            stage_id=self.id,
            kind=self.kind,
            status=StageStatus.SUCCESS,
            summary=summary,
            metrics=dict(metrics or {}),
            warnings=ctx.warnings_for(self.id),
            artifacts=arts,
            payload=dict(payload or {}),
        )
