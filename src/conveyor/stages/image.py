"""Stage canônico: image (v1).

Empacota o conteúdo do workspace numa imagem de container `nome:tag` e,
opcionalmente, a publica num registry autenticado.

Opções:
- name: nome da imagem (obrigatório)
- tag: tag principal (padrão `${BUILD_NUMBER}`)
- also_tag: tags adicionais (ex.: `latest`)
- context: diretório de build relativo ao workspace (padrão `.`)
- dockerfile: caminho do Dockerfile (opcional)
- build_args: mapa de `--build-arg`
- registry: host do registry (prefixa o nome da imagem)
- push: publica as tags após o build (padrão true)
- username_env / password_env: variáveis com as credenciais do registry
- engine: comando do container engine (padrão `docker`)
- unstash: stashes extraídos antes do build
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from conveyor.core.agents import Agent
from conveyor.core.definition.schema import StageSpec
from conveyor.core.exceptions import StageConfigurationError
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.types import StageKind, StageResult

from .base import (
    BaseStage,
    _invalid,
    check_unknown_options,
    opt_bool,
    opt_env,
    opt_str,
    opt_str_list,
)


DEFAULT_TAG = "${BUILD_NUMBER}"
DEFAULT_ENGINE = "docker"


def image_ref(name: str, registry: Optional[str]) -> str:
    if not registry:
        return name
    return f"{registry.rstrip('/')}/{name}"


def build_command(
    *,
    engine: str,
    refs: List[str],
    context: str,
    dockerfile: Optional[str] = None,
    build_args: Optional[Dict[str, str]] = None,
) -> str:
    args: List[str] = [engine, "build"]
    for ref in refs:
        args += ["-t", shlex.quote(ref)]
    if dockerfile:
        args += ["-f", shlex.quote(dockerfile)]
    for k, v in sorted((build_args or {}).items()):
        args += ["--build-arg", shlex.quote(f"{k}={v}")]
    args.append(shlex.quote(context))
    return " ".join(args)


def login_command(*, engine: str, registry: str, username_env: str, password_env: str) -> str:
    # credenciais expandidas pelo shell; nunca aparecem na linha registrada
    return (
        f'printf \'%s\' "${{{password_env}}}" | '
        f'{engine} login {shlex.quote(registry)} -u "${{{username_env}}}" --password-stdin'
    )


@dataclass
class ImageStage(BaseStage):
    """Build + tag + push de uma imagem de container."""

    kind: StageKind = StageKind.PACKAGE
    name: str = ""
    tag: str = DEFAULT_TAG
    also_tag: List[str] = field(default_factory=list)
    context: str = "."
    dockerfile: Optional[str] = None
    build_args: Dict[str, str] = field(default_factory=dict)
    registry: Optional[str] = None
    push: bool = True
    username_env: Optional[str] = None
    password_env: Optional[str] = None
    engine: str = DEFAULT_ENGINE
    unstash_names: List[str] = field(default_factory=list)

    OPTIONS = (
        "name", "tag", "also_tag", "context", "dockerfile", "build_args", "registry",
        "push", "username_env", "password_env", "engine", "unstash",
    )

    @classmethod
    def from_spec(cls, spec: StageSpec) -> "ImageStage":
        check_unknown_options(spec, cls.OPTIONS)
        username_env = opt_str(spec, "username_env")
        password_env = opt_str(spec, "password_env")
        if bool(username_env) != bool(password_env):
            raise _invalid(spec, "options 'username_env' and 'password_env' must be declared together")
        registry = opt_str(spec, "registry")
        if username_env and not registry:
            raise _invalid(spec, "registry credentials require option 'registry'")
        return cls(
            **cls.common(spec),
            name=str(opt_str(spec, "name", required=True)),
            tag=str(opt_str(spec, "tag", DEFAULT_TAG)),
            also_tag=opt_str_list(spec, "also_tag"),
            context=str(opt_str(spec, "context", ".")),
            dockerfile=opt_str(spec, "dockerfile"),
            build_args=opt_env(spec, "build_args"),
            registry=registry,
            push=opt_bool(spec, "push", True),
            username_env=username_env,
            password_env=password_env,
            engine=str(opt_str(spec, "engine", DEFAULT_ENGINE)),
            unstash_names=opt_str_list(spec, "unstash"),
        )

    def _credentials(self, ctx: RunContext) -> List[str]:
        values: List[str] = []
        for var in (self.username_env, self.password_env):
            if not var:
                continue
            value = ctx.env.get(var, os.environ.get(var))
            if not value:
                raise StageConfigurationError(
                    message=f"Registry credentials variable '{var}' is not set",
                    details={"stage": self.id, "variable": var},
                    hint="Exporte a variável no ambiente do processo ou declare-a em `environment`.",
                )
            values.append(value)
        return values

    def run(self, ctx: RunContext, agent: Agent) -> StageResult:
        self.unstash(ctx, agent, self.unstash_names)

        registry = self.expand(ctx, self.registry) if self.registry else None
        ref = image_ref(self.expand(ctx, self.name), registry)
        tags = [self.expand(ctx, self.tag)] + [self.expand(ctx, t) for t in self.also_tag]
        refs = [f"{ref}:{t}" for t in tags]

        self.sh(
            ctx,
            agent,
            build_command(
                engine=self.engine,
                refs=refs,
                context=self.context,
                dockerfile=self.dockerfile,
                build_args={k: self.expand(ctx, v) for k, v in self.build_args.items()},
            ),
        )

        pushed: List[str] = []
        if self.push:
            if self.username_env and self.password_env and registry:
                secrets = self._credentials(ctx)
                self.sh(
                    ctx,
                    agent,
                    login_command(
                        engine=self.engine,
                        registry=registry,
                        username_env=self.username_env,
                        password_env=self.password_env,
                    ),
                    env={self.username_env: secrets[0], self.password_env: secrets[1]},
                    secrets=secrets,
                )
            for r in refs:
                self.sh(ctx, agent, f"{self.engine} push {shlex.quote(r)}")
                pushed.append(r)

        ctx.set_artifact(f"image.{self.id}", refs[0])
        return self.success(
            ctx,
            f"image {refs[0]} built" + (" and pushed" if pushed else ""),
            metrics={"tags": len(refs), "pushed": len(pushed)},
            artifacts={"image": refs[0], "refs": refs, "pushed": pushed},
        )
