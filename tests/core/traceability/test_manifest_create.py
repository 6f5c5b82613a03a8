# tests/core/traceability/test_manifest_create.py
"""
Testes de criação do Manifest v1.

Invariantes:
    - O Manifest inicial não possui eventos nem Stages
    - Timestamps são normalizados para UTC
"""

from datetime import datetime, timedelta, timezone

import pytest

try:
    from conveyor.core.traceability.manifest import RunManifest, create_manifest
except Exception as e:  # noqa: BLE001
    create_manifest = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/conveyor/core/traceability/manifest.py. Import error: {_IMPORT_ERR}")


def _make(**kw):
    params = dict(
        run_id="fullstack-42-abcd1234",
        started_at=datetime(2026, 1, 16, 12, 0, 0, tzinfo=timezone.utc),
        conveyor_version="0.1.0",
        config_hash="c" * 64,
        definition_hash="d" * 64,
        build_number=42,
    )
    params.update(kw)
    return create_manifest(**params)


def test_create_manifest_fields():
    _require_imports()
    m = _make()

    assert isinstance(m, RunManifest)
    assert m.run["run_id"] == "fullstack-42-abcd1234"
    assert m.run["build_number"] == 42
    assert m.run["conveyor_version"] == "0.1.0"
    assert m.inputs == {"config_hash": "c" * 64, "definition_hash": "d" * 64}
    assert m.stages == {}
    assert m.events == []


def test_started_at_is_normalized_to_utc():
    """Um timestamp em UTC-3 é gravado no equivalente UTC; naive é assumido UTC."""
    _require_imports()
    brt = timezone(timedelta(hours=-3))
    m = _make(started_at=datetime(2026, 1, 16, 9, 0, 0, tzinfo=brt))
    naive = _make(started_at=datetime(2026, 1, 16, 12, 0, 0))

    assert m.run["started_at"] == "2026-01-16T12:00:00+00:00"
    assert naive.run["started_at"] == "2026-01-16T12:00:00+00:00"
