# src/conveyor/core/health/verifier.py
"""
Verificador de saúde com retry limitado.

Após o deploy, serviços dependentes levam algum tempo para responder.
O verificador sonda cada check até `attempts` vezes, com espaçamento fixo
de `interval` segundos entre tentativas, e declara falha quando todas as
tentativas falham.

Política (v1):
    - Padrão: 5 tentativas, 10 segundos de espaçamento
    - A espera ocorre apenas ENTRE tentativas (nunca após a última)
    - A primeira sondagem bem-sucedida encerra o retry
    - Checks são verificados em ordem de declaração
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol


DEFAULT_ATTEMPTS = 5
DEFAULT_INTERVAL_SECONDS = 10.0


class HealthCheck(Protocol):
    name: str

    def probe(self) -> Optional[str]:
        ...


@dataclass(frozen=True)
class HealthReport:
    """Resultado final da verificação de um check."""

    name: str
    healthy: bool
    attempts: int
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "errors": list(self.errors),
        }


def verify(
    check: HealthCheck,
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    interval: float = DEFAULT_INTERVAL_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Optional[Callable[[int, Optional[str]], None]] = None,
) -> HealthReport:
    """
    Sonda `check` até ficar saudável ou esgotar `attempts`.

    Args:
        check: objeto com `name` e `probe() -> Optional[str]`.
        attempts: número máximo de sondagens (>= 1).
        interval: espera em segundos entre sondagens.
        sleep: função de espera (injetável em testes).
        on_attempt: callback `(tentativa, erro)` chamado após cada sondagem.

    Returns:
        HealthReport: saudável ou não, com o número de tentativas realizadas.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    if interval < 0:
        raise ValueError("interval must be >= 0")

    errors: List[str] = []
    for attempt in range(1, attempts + 1):
        error = check.probe()
        if on_attempt is not None:
            on_attempt(attempt, error)
        if error is None:
            return HealthReport(name=check.name, healthy=True, attempts=attempt, errors=errors)
        errors.append(error)
        if attempt < attempts:
            sleep(interval)

    return HealthReport(
        name=check.name,
        healthy=False,
        attempts=attempts,
        last_error=errors[-1] if errors else None,
        errors=errors,
    )


def verify_all(
    checks: Iterable[HealthCheck],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    interval: float = DEFAULT_INTERVAL_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Optional[Callable[[str, int, Optional[str]], None]] = None,
) -> List[HealthReport]:
    reports: List[HealthReport] = []
    for check in checks:
        callback = None
        if on_attempt is not None:
            callback = (lambda n, err, _name=check.name: on_attempt(_name, n, err))
        reports.append(verify(check, attempts=attempts, interval=interval, sleep=sleep, on_attempt=callback))
    return reports
