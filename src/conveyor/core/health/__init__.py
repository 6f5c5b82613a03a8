# src/conveyor/core/health/__init__.py
"""Verificação pós-deploy: checks HTTP/TCP/comando e retry limitado."""

from .checks import CommandCheck, HttpCheck, TcpCheck, check_from_dict
from .verifier import (
    DEFAULT_ATTEMPTS,
    DEFAULT_INTERVAL_SECONDS,
    HealthReport,
    verify,
    verify_all,
)

__all__ = [
    "CommandCheck",
    "DEFAULT_ATTEMPTS",
    "DEFAULT_INTERVAL_SECONDS",
    "HealthReport",
    "HttpCheck",
    "TcpCheck",
    "check_from_dict",
    "verify",
    "verify_all",
]
