"""Stage canônico: compose (v1).

Aplica um arquivo de orquestração multi-container.

Opções:
- file: arquivo de orquestração relativo ao workspace (padrão `docker-compose.yml`)
- project: nome do projeto (opcional)
- action: `up` | `down` | `ps` | `restart` (padrão `up`)
- pull: executa `pull` antes de `up` (padrão false)
- engine: comando de orquestração (padrão `docker compose`)
- env: variáveis adicionais (ex.: `TAG: ${BUILD_NUMBER}` para o arquivo)
- unstash: stashes extraídos antes (ex.: o próprio arquivo de orquestração)
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from conveyor.core.agents import Agent
from conveyor.core.definition.schema import StageSpec
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.types import StageKind, StageResult

from .base import BaseStage, _invalid, check_unknown_options, opt_bool, opt_env, opt_str, opt_str_list


ACTIONS = {
    "up": "up -d --remove-orphans",
    "down": "down --remove-orphans",
    "ps": "ps",
    "restart": "restart",
}
DEFAULT_ENGINE = "docker compose"


def compose_commands(
    *,
    engine: str,
    file: str,
    action: str,
    project: Optional[str] = None,
    pull: bool = False,
) -> List[str]:
    base = f"{engine} -f {shlex.quote(file)}"
    if project:
        base += f" -p {shlex.quote(project)}"
    commands: List[str] = []
    if pull and action == "up":
        commands.append(f"{base} pull")
    commands.append(f"{base} {ACTIONS[action]}")
    return commands


@dataclass
class ComposeStage(BaseStage):
    """Aplica `action` sobre o arquivo de orquestração no workspace do agente."""

    kind: StageKind = StageKind.DEPLOY
    file: str = "docker-compose.yml"
    project: Optional[str] = None
    action: str = "up"
    pull: bool = False
    engine: str = DEFAULT_ENGINE
    env: Dict[str, str] = field(default_factory=dict)
    unstash_names: List[str] = field(default_factory=list)

    OPTIONS = ("file", "project", "action", "pull", "engine", "env", "unstash")

    @classmethod
    def from_spec(cls, spec: StageSpec) -> "ComposeStage":
        check_unknown_options(spec, cls.OPTIONS)
        action = str(opt_str(spec, "action", "up"))
        if action not in ACTIONS:
            raise _invalid(spec, f"option 'action' must be one of {sorted(ACTIONS)}")
        return cls(
            **cls.common(spec),
            file=str(opt_str(spec, "file", "docker-compose.yml")),
            project=opt_str(spec, "project"),
            action=action,
            pull=opt_bool(spec, "pull", False),
            engine=str(opt_str(spec, "engine", DEFAULT_ENGINE)),
            env=opt_env(spec),
            unstash_names=opt_str_list(spec, "unstash"),
        )

    def run(self, ctx: RunContext, agent: Agent) -> StageResult:
        self.unstash(ctx, agent, self.unstash_names)
        env = {k: self.expand(ctx, v) for k, v in self.env.items()}
        commands = compose_commands(
            engine=self.engine,
            file=self.expand(ctx, self.file),
            action=self.action,
            project=self.expand(ctx, self.project) if self.project else None,
            pull=self.pull,
        )
        output = ""
        for command in commands:
            output = self.sh(ctx, agent, command, env=env).output

        payload = {"ps": output} if self.action == "ps" else {}
        return self.success(
            ctx,
            f"compose {self.action} applied",
            metrics={"commands": len(commands)},
            artifacts={"file": self.file, "action": self.action},
            payload=payload,
        )
