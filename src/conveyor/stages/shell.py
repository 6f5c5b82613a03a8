"""Stage canônico: shell (v1).

Executa uma sequência de passos shell no workspace do agente.

Opções:
- steps: lista de passos `{run, allow_failure, when_exists}` (string = `{run: ...}`)
- unstash: stashes extraídos no workspace antes dos passos
- stash: stashes publicados após os passos `[{name, includes, excludes, allow_empty}]`
- env: variáveis adicionais para os passos
- kind: classificação semântica (padrão `build`)

Política de falha:
- o primeiro passo com exit code != 0 falha o Stage (passos seguintes não executam)
- `allow_failure: true` tolera o exit code e registra warning
- passo com `when_exists` ausente no workspace é pulado
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from conveyor.core.agents import Agent
from conveyor.core.definition.schema import StageSpec
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.types import StageKind, StageResult

from .base import (
    BaseStage,
    StashSpec,
    _invalid,
    check_unknown_options,
    opt_env,
    opt_kind,
    opt_stashes,
    opt_str_list,
)


@dataclass(frozen=True)
class ShellStep:
    run: str
    allow_failure: bool = False
    when_exists: Optional[str] = None


def _parse_steps(spec: StageSpec) -> List[ShellStep]:
    raw = spec.options.get("steps")
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not raw:
        raise _invalid(spec, "option 'steps' must be a non-empty list")
    steps: List[ShellStep] = []
    for i, item in enumerate(raw):
        if isinstance(item, str):
            item = {"run": item}
        if not isinstance(item, dict) or not isinstance(item.get("run"), str) or not item["run"].strip():
            raise _invalid(spec, f"steps[{i}].run is required")
        allow_failure = item.get("allow_failure", False)
        if not isinstance(allow_failure, bool):
            raise _invalid(spec, f"steps[{i}].allow_failure must be a boolean")
        when_exists = item.get("when_exists")
        if when_exists is not None and (not isinstance(when_exists, str) or not when_exists.strip()):
            raise _invalid(spec, f"steps[{i}].when_exists must be a string")
        extra = sorted(set(item) - {"run", "allow_failure", "when_exists"})
        if extra:
            raise _invalid(spec, f"steps[{i}]: unsupported keys: {', '.join(extra)}")
        steps.append(ShellStep(run=item["run"], allow_failure=allow_failure, when_exists=when_exists))
    return steps


@dataclass
class ShellStage(BaseStage):
    """Executa passos shell em sequência, com unstash antes e stash depois."""

    kind: StageKind = StageKind.BUILD
    steps: List[ShellStep] = field(default_factory=list)
    unstash_names: List[str] = field(default_factory=list)
    stashes: List[StashSpec] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    OPTIONS = ("steps", "unstash", "stash", "env", "kind")

    @classmethod
    def from_spec(cls, spec: StageSpec) -> "ShellStage":
        check_unknown_options(spec, cls.OPTIONS)
        return cls(
            **cls.common(spec),
            kind=opt_kind(spec, StageKind.BUILD),
            steps=_parse_steps(spec),
            unstash_names=opt_str_list(spec, "unstash"),
            stashes=opt_stashes(spec),
            env=opt_env(spec),
        )

    def run(self, ctx: RunContext, agent: Agent) -> StageResult:
        unstashed = self.unstash(ctx, agent, self.unstash_names)
        env = {k: self.expand(ctx, v) for k, v in self.env.items()}
        workspace = agent.ensure_workspace()

        executed = 0
        skipped = 0
        tolerated = 0
        duration_ms = 0
        for step in self.steps:
            if step.when_exists and not (workspace / step.when_exists).exists():
                skipped += 1
                ctx.log(stage_id=self.id, level="info", message="step skipped (condition not met)", when_exists=step.when_exists)
                continue
            outcome = self.sh(ctx, agent, step.run, allow_failure=step.allow_failure, env=env)
            executed += 1
            duration_ms += outcome.duration_ms
            if not outcome.ok:
                tolerated += 1

        stashed = self.stash(ctx, agent, self.stashes)

        artifacts: Dict[str, Any] = {}
        if stashed:
            artifacts["stashes"] = [m.name for m in stashed]
        if unstashed:
            artifacts["unstashed"] = [m.name for m in unstashed]

        return self.success(
            ctx,
            f"{executed} step(s) executed",
            metrics={
                "steps_executed": executed,
                "steps_skipped": skipped,
                "steps_tolerated": tolerated,
                "duration_ms": duration_ms,
            },
            artifacts=artifacts,
        )
