"""Stage canônico: collect_logs (v1).

Coleta diagnóstico best-effort (ex.: `docker compose logs`, `ps`), em geral
como handler `post.failure`.

Opções:
- commands: comandos de coleta (obrigatório)

Saída: `run_dir/diagnostics/<stage_id>.log`. Este Stage nunca falha:
comandos com exit code != 0 ou que estouram o tempo limite viram warnings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from conveyor.core.agents import Agent
from conveyor.core.definition.schema import StageSpec
from conveyor.core.exceptions import CommandTimeoutError
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.types import StageKind, StageResult

from .base import BaseStage, _invalid, check_unknown_options, opt_str_list


@dataclass
class CollectLogsStage(BaseStage):
    """Executa comandos de diagnóstico e salva a saída combinada."""

    kind: StageKind = StageKind.DIAGNOSTIC
    commands: List[str] = field(default_factory=list)

    OPTIONS = ("commands",)

    @classmethod
    def from_spec(cls, spec: StageSpec) -> "CollectLogsStage":
        check_unknown_options(spec, cls.OPTIONS)
        commands = opt_str_list(spec, "commands")
        if not commands:
            raise _invalid(spec, "option 'commands' must be a non-empty list")
        return cls(**cls.common(spec), commands=commands)

    def diagnostics_path(self, ctx: RunContext) -> Optional[Path]:
        try:
            return ctx.run_dir / "diagnostics" / f"{self.id}.log"
        except KeyError:
            return None

    def run(self, ctx: RunContext, agent: Agent) -> StageResult:
        out = self.diagnostics_path(ctx)
        collected = 0
        for command in self.commands:
            try:
                outcome = self.sh(ctx, agent, command, allow_failure=True, log_path=out)
            except (CommandTimeoutError, OSError) as e:
                ctx.add_warning(stage_id=self.id, message=f"diagnostic command failed: {command}: {e}")
                continue
            if outcome.ok:
                collected += 1

        artifacts = {"diagnostics": str(out)} if out is not None and out.exists() else {}
        return self.success(
            ctx,
            f"{collected} of {len(self.commands)} diagnostic command(s) collected",
            metrics={"commands": len(self.commands), "collected": collected},
            artifacts=artifacts,
        )
