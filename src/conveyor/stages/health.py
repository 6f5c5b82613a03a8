"""Stage canônico: health (v1).

Verifica, após o deploy, que os serviços dependentes respondem, com retry
limitado por check.

Opções:
- checks: lista de checks `{type: http|tcp|command, name, ...}` (obrigatório)
- attempts: tentativas por check (padrão `health.attempts` da config, 5)
- interval_seconds: espera entre tentativas (padrão `health.interval_seconds`, 10)
- timeout_seconds: tempo limite de cada sondagem (padrão `health.timeout_seconds`, 5)

O Stage falha (`HealthCheckFailedError`) quando qualquer check permanece
não saudável após todas as tentativas.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from conveyor.core.agents import Agent
from conveyor.core.config import section
from conveyor.core.definition.schema import StageSpec
from conveyor.core.exceptions import HealthCheckFailedError
from conveyor.core.health import (
    DEFAULT_ATTEMPTS,
    DEFAULT_INTERVAL_SECONDS,
    check_from_dict,
    verify_all,
)
from conveyor.core.health.checks import DEFAULT_TIMEOUT_SECONDS
from conveyor.core.pipeline.context import RunContext
from conveyor.core.pipeline.types import StageKind, StageResult
from conveyor.core.shell import DEFAULT_SHELL

from .base import BaseStage, _invalid, check_unknown_options, opt_number


_CHECK_TYPES = {"http": ("url",), "tcp": ("port",), "command": ("command",)}


def _parse_checks(spec: StageSpec) -> List[Dict[str, Any]]:
    raw = spec.options.get("checks")
    if not isinstance(raw, list) or not raw:
        raise _invalid(spec, "option 'checks' must be a non-empty list")
    out: List[Dict[str, Any]] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise _invalid(spec, f"checks[{i}] must be a mapping")
        ctype = item.get("type", "http")
        if ctype not in _CHECK_TYPES:
            raise _invalid(spec, f"checks[{i}].type must be one of {sorted(_CHECK_TYPES)}")
        for key in _CHECK_TYPES[ctype]:
            if item.get(key) in (None, ""):
                raise _invalid(spec, f"checks[{i}].{key} is required for {ctype} checks")
        out.append(dict(item, type=ctype))
    return out


@dataclass
class HealthStage(BaseStage):
    """Sonda cada check até ficar saudável ou esgotar as tentativas."""

    kind: StageKind = StageKind.VERIFY
    checks: List[Dict[str, Any]] = field(default_factory=list)
    attempts: Optional[int] = None
    interval_seconds: Optional[float] = None
    timeout_seconds: Optional[float] = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    OPTIONS = ("checks", "attempts", "interval_seconds", "timeout_seconds")

    @classmethod
    def from_spec(cls, spec: StageSpec) -> "HealthStage":
        check_unknown_options(spec, cls.OPTIONS)
        attempts = opt_number(spec, "attempts")
        if attempts is not None and (int(attempts) != attempts or attempts < 1):
            raise _invalid(spec, "option 'attempts' must be an integer >= 1")
        return cls(
            **cls.common(spec),
            checks=_parse_checks(spec),
            attempts=int(attempts) if attempts is not None else None,
            interval_seconds=opt_number(spec, "interval_seconds"),
            timeout_seconds=opt_number(spec, "timeout_seconds"),
        )

    def _policy(self, ctx: RunContext) -> Dict[str, float]:
        cfg = section(ctx.config, "health")
        return {
            "attempts": int(self.attempts or cfg.get("attempts", DEFAULT_ATTEMPTS)),
            "interval": float(
                self.interval_seconds if self.interval_seconds is not None
                else cfg.get("interval_seconds", DEFAULT_INTERVAL_SECONDS)
            ),
            "timeout": float(
                self.timeout_seconds if self.timeout_seconds is not None
                else cfg.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
            ),
        }

    def run(self, ctx: RunContext, agent: Agent) -> StageResult:
        policy = self._policy(ctx)
        shell = str(section(ctx.config, "shell").get("executable") or DEFAULT_SHELL)
        checks = [
            check_from_dict(
                c,
                env=ctx.env,
                timeout=policy["timeout"],
                cwd=agent.ensure_workspace(),
                log_path=self.log_path(ctx),
                shell=shell,
            )
            for c in self.checks
        ]

        def _on_attempt(name: str, attempt: int, error: Optional[str]) -> None:
            ctx.log(
                stage_id=self.id,
                level="info" if error is None else "warning",
                message="health probe",
                check=name,
                attempt=attempt,
                error=error,
            )

        reports = verify_all(
            checks,
            attempts=int(policy["attempts"]),
            interval=policy["interval"],
            sleep=self.sleep,
            on_attempt=_on_attempt,
        )

        unhealthy = [r.to_dict() for r in reports if not r.healthy]
        if unhealthy:
            raise HealthCheckFailedError(
                message=f"{len(unhealthy)} of {len(reports)} health check(s) failed",
                details={"stage": self.id, "unhealthy": unhealthy},
                hint="Inspecione o diagnóstico coletado e o estado dos serviços após o deploy.",
            )

        return self.success(
            ctx,
            f"{len(reports)} health check(s) passed",
            metrics={
                "checks": len(reports),
                "attempts": sum(r.attempts for r in reports),
            },
            payload={"reports": [r.to_dict() for r in reports]},
        )
