# tests/core/pipeline/test_registry_unique_stage_id.py
"""
Testes do StageRegistry.

Invariantes:
    - Cada `stage.id` é único no registry
    - A ordem de registro é preservada
"""

import pytest

try:
    from conveyor.core.pipeline.registry import DuplicateStageIdError, StageRegistry
except Exception as e:  # noqa: BLE001
    StageRegistry = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/conveyor/core/pipeline/registry.py. Import error: {_IMPORT_ERR}")


def test_registry_rejects_duplicate_ids(DummyStage):
    _require_imports()
    reg = StageRegistry()
    reg.add(DummyStage("build"))

    with pytest.raises(DuplicateStageIdError):
        reg.add(DummyStage("build"))

    assert len(reg) == 1


def test_registry_preserves_order(DummyStage):
    _require_imports()
    reg = StageRegistry()
    reg.extend([DummyStage("zeta"), DummyStage("alpha"), DummyStage("mid")])

    assert [s.id for s in reg.list()] == ["zeta", "alpha", "mid"]
    assert "alpha" in reg
    assert reg.get("mid").id == "mid"


def test_registry_rejects_blank_id(DummyStage):
    _require_imports()
    with pytest.raises(ValueError):
        StageRegistry().add(DummyStage(""))
