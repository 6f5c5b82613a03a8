"""Stage canônico: checkout (v1).

Obtém o código-fonte do controle de versão no workspace do agente e o
publica como stash para os agentes de build.

Opções:
- repository: URL ou caminho do repositório (obrigatório)
- branch: branch a obter (padrão `main`)
- credentials: nome da variável de ambiente com o token de acesso
- directory: subdiretório do workspace para o clone (padrão `source`);
  caminhos absolutos, `..` e o próprio workspace são rejeitados
- depth: profundidade do clone (padrão 1; 0 → histórico completo)
- stash: nome do stash com o checkout completo (padrão `source`; false desativa)
- tool: executável do controle de versão (padrão `git`)

Credenciais:
- o token nunca entra na linha de comando registrada: a URL referencia
  a variável (`${VAR}`) e a expansão é feita pelo shell
- qualquer ocorrência do valor na saída é mascarada no log
"""

from __future__ import annotations

import os
import shlex
import shutil
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

from conveyor.core.agents import Agent
from conveyor.core.definition.schema import StageSpec
from conveyor.core.exceptions import StageConfigurationError
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.types import StageKind, StageResult

from .base import (
    BaseStage,
    StashSpec,
    _invalid,
    check_unknown_options,
    opt_number,
    opt_str,
    opt_workspace_path,
)


DEFAULT_BRANCH = "main"
DEFAULT_STASH = "source"
DEFAULT_DIRECTORY = "source"


def authenticated_url(repository: str, credentials: Optional[str]) -> str:
    """Insere a referência `${VAR}` no userinfo de URLs http(s)."""
    if not credentials:
        return repository
    parts = urlsplit(repository)
    if parts.scheme not in {"http", "https"}:
        return repository
    host = parts.netloc.rsplit("@", 1)[-1]
    netloc = f"x-access-token:${{{credentials}}}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def clone_command(
    *,
    tool: str,
    repository: str,
    branch: str,
    directory: str,
    depth: int,
    credentials: Optional[str] = None,
) -> str:
    url = authenticated_url(repository, credentials)
    # a URL fica entre aspas duplas para que o shell expanda apenas ${VAR}
    quoted_url = '"' + url.replace('"', '\\"') + '"'
    args: List[str] = [tool, "clone", "--branch", shlex.quote(branch)]
    if depth > 0:
        args += ["--depth", str(depth)]
    args += [quoted_url, shlex.quote(directory)]
    return " ".join(args)


@dataclass
class CheckoutStage(BaseStage):
    """Clona `repository@branch` e publica o stash do código-fonte."""

    kind: StageKind = StageKind.CHECKOUT
    repository: str = ""
    branch: str = DEFAULT_BRANCH
    credentials: Optional[str] = None
    directory: str = DEFAULT_DIRECTORY
    depth: int = 1
    stash_name: Optional[str] = DEFAULT_STASH
    tool: str = "git"

    OPTIONS = ("repository", "branch", "credentials", "directory", "depth", "stash", "tool")

    @classmethod
    def from_spec(cls, spec: StageSpec) -> "CheckoutStage":
        check_unknown_options(spec, cls.OPTIONS)
        raw_stash = spec.options.get("stash", DEFAULT_STASH)
        if raw_stash is False:
            stash_name = None
        elif isinstance(raw_stash, str) and raw_stash.strip():
            stash_name = raw_stash
        else:
            raise _invalid(spec, "option 'stash' must be a stash name or false")
        depth = opt_number(spec, "depth", 1)
        return cls(
            **cls.common(spec),
            repository=str(opt_str(spec, "repository", required=True)),
            branch=str(opt_str(spec, "branch", DEFAULT_BRANCH)),
            credentials=opt_str(spec, "credentials"),
            directory=opt_workspace_path(spec, "directory", DEFAULT_DIRECTORY),
            depth=int(depth or 0),
            stash_name=stash_name,
            tool=str(opt_str(spec, "tool", "git")),
        )

    def _secret(self, ctx: RunContext) -> List[str]:
        if not self.credentials:
            return []
        value = ctx.env.get(self.credentials, os.environ.get(self.credentials))
        if not value:
            raise StageConfigurationError(
                message=f"Credentials variable '{self.credentials}' is not set",
                details={"stage": self.id, "credentials": self.credentials},
                hint="Exporte a variável no ambiente do processo ou declare-a em `environment`.",
            )
        return [value]

    def run(self, ctx: RunContext, agent: Agent) -> StageResult:
        secrets = self._secret(ctx)
        repository = self.expand(ctx, self.repository)
        branch = self.expand(ctx, self.branch)

        target = self.workspace_path(agent, self.directory, allow_root=False)
        if target.exists():
            shutil.rmtree(target)

        command = clone_command(
            tool=self.tool,
            repository=repository,
            branch=branch,
            directory=self.directory,
            depth=self.depth,
            credentials=self.credentials,
        )
        env = {self.credentials: secrets[0]} if secrets and self.credentials else None
        self.sh(ctx, agent, command, env=env, secrets=secrets)

        revision = self.sh(
            ctx,
            agent,
            f"cd {shlex.quote(self.directory)} && {self.tool} rev-parse HEAD",
            allow_failure=True,
        )
        commit = revision.output.strip().splitlines()[-1] if revision.ok and revision.output.strip() else None

        artifacts: Dict[str, Any] = {"repository": repository, "branch": branch, "commit": commit}
        if self.stash_name:
            metas = self.stash(ctx, agent, [StashSpec(name=self.stash_name, dir=self.directory)])
            artifacts["stashes"] = [m.name for m in metas]

        ctx.set_artifact(f"checkout.{self.id}.commit", commit)
        return self.success(
            ctx,
            f"checked out {branch}" + (f" at {commit[:12]}" if commit else ""),
            artifacts=artifacts,
        )
