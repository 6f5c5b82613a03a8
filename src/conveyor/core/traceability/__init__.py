# src/conveyor/core/traceability/__init__.py
"""
Rastreabilidade de runs do Conveyor (Manifest v1).

API pública:
    - RunManifest     → estrutura canônica do Manifest
    - create_manifest → criação explícita (sem eventos implícitos)
    - add_event       → registro explícito no Event Log
    - stage_started / stage_finished / stage_failed / stage_skipped
    - run_finished    → status final da run
    - save_manifest / load_manifest → persistência JSON (round-trip)
"""

from .manifest import (
    RunManifest,
    add_event,
    create_manifest,
    load_manifest,
    run_finished,
    save_manifest,
    stage_failed,
    stage_finished,
    stage_skipped,
    stage_started,
)

__all__ = [
    "RunManifest",
    "add_event",
    "create_manifest",
    "load_manifest",
    "run_finished",
    "save_manifest",
    "stage_failed",
    "stage_finished",
    "stage_skipped",
    "stage_started",
]
