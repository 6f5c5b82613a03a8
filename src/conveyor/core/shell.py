# src/conveyor/core/shell.py
"""
Execução de comandos externos com política de exit code.

Toda unidade de trabalho de um Stage é delegada a uma ferramenta externa
invocada por shell. A política de falha é a de pipelines declarativos:

    - exit code diferente de zero falha o Stage imediatamente
    - exceto quando o passo é explicitamente tolerado (`allow_failure`,
      equivalente a `|| true`), caso em que o resultado é devolvido
    - estouro de tempo limite é sempre falha

A saída combinada (stdout + stderr) de cada comando é anexada ao arquivo
de log do Stage, com valores sensíveis mascarados. Bytes fora de UTF-8 são
substituídos na decodificação: só o exit code decide a falha.
"""

from __future__ import annotations

import os
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from conveyor.core.exceptions import CommandError, CommandTimeoutError


DEFAULT_SHELL = "/bin/sh"
_TAIL_LINES = 20
_MASK = "****"
_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class UnresolvedVariableError(KeyError):
    """Referência `${NOME}` sem valor no ambiente resolvido."""

    def __init__(self, name: str, text: str):
        super().__init__(name)
        self.name = name
        self.text = text

    def __str__(self) -> str:
        return f"Unresolved variable '${{{self.name}}}' in: {self.text}"


def interpolate(text: str, env: Mapping[str, str]) -> str:
    """Expande referências `${NOME}` usando `env`; nomes ausentes são erro."""

    def _sub(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in env:
            raise UnresolvedVariableError(name, text)
        return str(env[name])

    return _VAR_PATTERN.sub(_sub, str(text))


def redact(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, _MASK)
    return text


def _tail(output: str, lines: int = _TAIL_LINES) -> str:
    return "\n".join(output.splitlines()[-lines:])


@dataclass(frozen=True)
class CommandOutcome:
    """Resultado de um comando concluído (exit code zero ou tolerado)."""

    command: str
    returncode: int
    output: str
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _append_log(log_path: Optional[Path], text: str) -> None:
    if log_path is None:
        return
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as fh:
        fh.write(text)


def run_command(
    command: str,
    *,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    log_path: Optional[Path] = None,
    allow_failure: bool = False,
    shell: str = DEFAULT_SHELL,
    secrets: Sequence[str] = (),
) -> CommandOutcome:
    """
    Executa `command` via `shell -c` e aplica a política de exit code.

    Args:
        command: linha de comando (sintaxe do shell configurado).
        cwd: diretório de trabalho (workspace do agente).
        env: variáveis adicionadas ao ambiente do processo atual.
        timeout: limite em segundos (None → sem limite).
        log_path: arquivo de log do Stage (append).
        allow_failure: quando True, exit code != 0 não levanta exceção.
        shell: executável do shell.
        secrets: valores mascarados no log e nas mensagens de erro.

    Returns:
        CommandOutcome: resultado do comando.

    Raises:
        CommandError: exit code != 0 sem `allow_failure`.
        CommandTimeoutError: tempo limite excedido.
    """
    process_env = os.environ.copy()
    if env:
        process_env.update({str(k): str(v) for k, v in env.items()})

    shown = redact(command, secrets)
    _append_log(log_path, f"$ {shown}\n")

    started = time.monotonic()
    try:
        proc = subprocess.run(
            [shell, "-c", command],
            cwd=str(cwd) if cwd else None,
            env=process_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        partial = e.output or ""
        if isinstance(partial, bytes):
            partial = partial.decode("utf-8", errors="replace")
        _append_log(log_path, redact(partial, secrets) + f"\n[timeout after {timeout}s]\n")
        raise CommandTimeoutError(
            message=f"Command timed out after {timeout}s",
            details={
                "command": shown,
                "timeout_seconds": timeout,
                "returncode": -1,
                "output_tail": _tail(redact(partial, secrets)),
            },
            hint="Aumente shell.timeout_seconds ou investigue o travamento da ferramenta externa.",
        ) from e

    duration_ms = int((time.monotonic() - started) * 1000)
    output = redact(proc.stdout or "", secrets)
    _append_log(log_path, output + ("" if output.endswith("\n") or not output else "\n"))

    if proc.returncode != 0:
        _append_log(log_path, f"[exit {proc.returncode}]\n")
        if not allow_failure:
            raise CommandError(
                message=f"Command failed with exit code {proc.returncode}: {shown}",
                details={
                    "command": shown,
                    "returncode": proc.returncode,
                    "output_tail": _tail(output),
                },
                hint="Verifique o log do Stage. Para tolerar a falha, declare allow_failure no passo.",
            )

    return CommandOutcome(command=shown, returncode=proc.returncode, output=output, duration_ms=duration_ms)
