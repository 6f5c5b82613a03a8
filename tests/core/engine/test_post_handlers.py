# tests/core/engine/test_post_handlers.py
"""
Testes dos handlers `post` (success / failure / always).

Decisões arquiteturais:
    - Handlers executam após todas as ondas
    - `success`/`failure` executam antes de `always`
    - Falha de handler vira warning; o status da run não muda
"""

import pytest

try:
    from conveyor.core.engine import SKIPPED_BY_CONFIG, Engine
    from conveyor.core.pipeline.types import StageKind, StageStatus
except Exception as e:  # noqa: BLE001
    Engine = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing Engine. Import error: {_IMPORT_ERR}")


def _post(DummyStage, **kw):
    return {k: [DummyStage(sid, kind=StageKind.DIAGNOSTIC) for sid in v] for k, v in kw.items()}


def test_failure_handlers_run_only_on_failure(dummy_ctx, DummyStage):
    _require_imports()
    post = _post(DummyStage, failure=["collect"], success=["notify"], always=["cleanup"])

    result = Engine(stages=[DummyStage("build", fail=True)], ctx=dummy_ctx, post=post).run()

    assert result.status == StageStatus.FAILED
    assert list(result.post) == ["collect", "cleanup"]
    assert post["failure"][0].calls == 1
    assert post["success"][0].calls == 0
    assert post["always"][0].calls == 1


def test_success_handlers_run_only_on_success(dummy_ctx, DummyStage):
    _require_imports()
    post = _post(DummyStage, failure=["collect"], success=["notify"])

    result = Engine(stages=[DummyStage("build")], ctx=dummy_ctx, post=post).run()

    assert result.ok
    assert list(result.post) == ["notify"]
    assert post["failure"][0].calls == 0


def test_failing_handler_becomes_warning(dummy_ctx, DummyStage):
    """A run continua SUCCESS mesmo quando um handler `always` falha."""
    _require_imports()
    post = {"always": [DummyStage("cleanup", fail=True)]}

    result = Engine(stages=[DummyStage("build")], ctx=dummy_ctx, post=post).run()

    assert result.ok
    assert result.post["cleanup"].status == StageStatus.FAILED
    assert result.warnings == ["post handler 'cleanup' failed: cleanup boom"]
    assert dummy_ctx.warnings_for("cleanup") == result.warnings


def test_disabled_handler_is_skipped(dummy_ctx, DummyStage):
    _require_imports()
    dummy_ctx.config["stages"] = {"collect": {"enabled": False}}
    post = _post(DummyStage, failure=["collect"])

    result = Engine(stages=[DummyStage("build", fail=True)], ctx=dummy_ctx, post=post).run()

    assert result.post["collect"].summary == SKIPPED_BY_CONFIG


def test_unknown_post_condition_is_rejected(dummy_ctx, DummyStage):
    _require_imports()
    with pytest.raises(ValueError, match="Unknown post"):
        Engine(stages=[], ctx=dummy_ctx, post={"unstable": [DummyStage("x")]})
