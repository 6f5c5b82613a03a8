# tests/core/pipeline/test_run_context_artifacts.py
"""
Testes do artifact store, dos caminhos e do ambiente do RunContext.
"""

import threading

import pytest

try:
    from conveyor.core.pipeline.context import RunContext
except Exception as e:  # noqa: BLE001
    RunContext = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/conveyor/core/pipeline/context.py. Import error: {_IMPORT_ERR}")


def test_set_get_has_artifact(dummy_ctx):
    _require_imports()
    dummy_ctx.set_artifact("image.backend", "registry.local/backend:42")

    assert dummy_ctx.has_artifact("image.backend")
    assert dummy_ctx.get_artifact("image.backend") == "registry.local/backend:42"


def test_missing_artifact_raises_keyerror(dummy_ctx):
    _require_imports()
    with pytest.raises(KeyError):
        dummy_ctx.get_artifact("nope")


def test_concurrent_writes_are_not_lost(dummy_ctx):
    """Stages de uma onda escrevem em paralelo; nenhuma escrita se perde."""
    _require_imports()

    def _write(n):
        for i in range(200):
            dummy_ctx.set_artifact(f"t{n}.{i}", i)
            dummy_ctx.log(stage_id=f"t{n}", level="info", message="w")

    threads = [threading.Thread(target=_write, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(dummy_ctx.has_artifact(f"t{n}.199") for n in range(4))
    assert len(dummy_ctx.events) == 800


def test_paths_derive_from_run_dir(dummy_ctx):
    _require_imports()
    assert dummy_ctx.stage_log_path("build") == dummy_ctx.run_dir / "logs" / "build.log"


def test_run_dir_required(dummy_config, dummy_ctx):
    _require_imports()
    ctx = RunContext(run_id="r", created_at=dummy_ctx.created_at, config=dummy_config)

    with pytest.raises(KeyError):
        _ = ctx.run_dir


def test_stage_env_overlays_without_mutating(dummy_ctx):
    _require_imports()
    env = dummy_ctx.stage_env({"NODE_ENV": "production", "PORT": 8080})

    assert env == {"BUILD_NUMBER": "42", "NODE_ENV": "production", "PORT": "8080"}
    assert dummy_ctx.env == {"BUILD_NUMBER": "42"}
