# src/conveyor/core/health/checks.py
"""
Checks de saúde pós-deploy.

Cada check executa uma única sondagem e devolve `None` em caso de sucesso
ou uma mensagem curta descrevendo a falha. O retry é responsabilidade do
verificador (`verifier.py`), nunca do check.

Tipos suportados (v1):
    - http    → GET em `url`, sucesso quando o status é `expect_status`
    - tcp     → conexão TCP em `host:port`
    - command → comando shell (ex.: ping de banco de dados), sucesso em exit 0

Referências `${NOME}` em `url`, `host`, `port` e `command` são expandidas
contra o ambiente da run antes da sondagem; nome ausente levanta
`UnresolvedVariableError`. Um `$NOME` sem chaves fica a cargo do shell.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import requests

from conveyor.core.exceptions import CommandTimeoutError
from conveyor.core.shell import interpolate, run_command


DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class HttpCheck:
    name: str
    url: str
    expect_status: int = 200
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    type = "http"

    def probe(self) -> Optional[str]:
        try:
            resp = requests.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            return f"{e.__class__.__name__}: {e}"
        if resp.status_code != self.expect_status:
            return f"unexpected status {resp.status_code} (expected {self.expect_status})"
        return None


@dataclass(frozen=True)
class TcpCheck:
    name: str
    host: str
    port: int
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    type = "tcp"

    def probe(self) -> Optional[str]:
        try:
            with socket.create_connection((self.host, int(self.port)), timeout=self.timeout):
                return None
        except OSError as e:
            return f"{e.__class__.__name__}: {e}"


@dataclass(frozen=True)
class CommandCheck:
    name: str
    command: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    cwd: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)
    log_path: Optional[Path] = None
    shell: str = "/bin/sh"

    type = "command"

    def probe(self) -> Optional[str]:
        # timeout é falha da sondagem, não da run: o verificador decide
        try:
            outcome = run_command(
                self.command,
                cwd=self.cwd,
                env=self.env,
                timeout=self.timeout,
                log_path=self.log_path,
                allow_failure=True,
                shell=self.shell,
            )
        except (CommandTimeoutError, OSError) as e:
            return f"{e.__class__.__name__}: {e}"
        if not outcome.ok:
            return f"exit code {outcome.returncode}"
        return None


def check_from_dict(
    spec: Mapping[str, Any],
    *,
    env: Mapping[str, str],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    cwd: Optional[Path] = None,
    log_path: Optional[Path] = None,
    shell: str = "/bin/sh",
):
    """Materializa um check a partir da definição (`{type, name, ...}`)."""
    ctype = str(spec.get("type", "http"))
    timeout = float(spec.get("timeout_seconds", timeout))

    if ctype == "http":
        url = interpolate(str(spec["url"]), env)
        return HttpCheck(
            name=str(spec.get("name") or url),
            url=url,
            expect_status=int(spec.get("expect_status", 200)),
            timeout=timeout,
        )
    if ctype == "tcp":
        host = interpolate(str(spec.get("host", "localhost")), env)
        port = int(interpolate(str(spec["port"]), env))
        return TcpCheck(name=str(spec.get("name") or f"{host}:{port}"), host=host, port=port, timeout=timeout)
    if ctype == "command":
        command = interpolate(str(spec["command"]), env)
        return CommandCheck(
            name=str(spec.get("name") or command),
            command=command,
            timeout=timeout,
            cwd=cwd,
            env=dict(env),
            log_path=log_path,
            shell=shell,
        )
    raise ValueError(f"Unknown health check type: {ctype}")
