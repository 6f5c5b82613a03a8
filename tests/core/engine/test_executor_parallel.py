# tests/core/engine/test_executor_parallel.py
"""
Testes de execução paralela por ondas.

O paralelismo é comprovado com `threading.Barrier`: a barreira só libera
quando todos os Stages da onda estão executando ao mesmo tempo. Uma
execução sequencial estouraria o timeout da barreira e o Stage falharia.

Invariantes:
    - Stages de uma onda executam simultaneamente (fan-out)
    - Dependentes só iniciam após o fim da onda anterior (fan-in)
    - `executors` de um agente limita Stages simultâneos nele
"""

import threading
import time

import pytest

try:
    from conveyor.core.agents import AgentPool
    from conveyor.core.engine import Engine
    from conveyor.core.pipeline.types import StageKind, StageResult, StageStatus
except Exception as e:  # noqa: BLE001
    Engine = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing Engine/agents. Import error: {_IMPORT_ERR}")


def test_wave_stages_run_concurrently(dummy_ctx, agent_pool, DummyStage, barrier_factory):
    _require_imports()
    barrier = barrier_factory(2)
    stages = [
        DummyStage("checkout"),
        DummyStage("backend", agent="java", depends_on=["checkout"], barrier=barrier),
        DummyStage("frontend", agent="node", depends_on=["checkout"], barrier=barrier),
        DummyStage("deploy", depends_on=["backend", "frontend"]),
    ]

    result = Engine(stages=stages, ctx=dummy_ctx, agents=agent_pool).run()

    assert result.ok, result.to_dict()
    assert dummy_ctx.get_artifact("backend.agent") == "builder-java"
    assert dummy_ctx.get_artifact("frontend.agent") == "builder-node"


def test_join_waits_for_all_branches(dummy_ctx, DummyStage):
    """`deploy` observa os artefatos de ambos os ramos, inclusive o mais lento."""
    _require_imports()
    seen = {}

    class _Join:
        id = "deploy"
        kind = StageKind.DEPLOY
        depends_on = ["slow", "fast"]
        agent = None
        when_exists = None

        def run(self, ctx, agent):
            seen["slow"] = ctx.has_artifact("slow.ok")
            seen["fast"] = ctx.has_artifact("fast.ok")
            return StageResult(stage_id=self.id, kind=self.kind, status=StageStatus.SUCCESS, summary="ok")

    stages = [DummyStage("slow", delay=0.2), DummyStage("fast"), _Join()]

    result = Engine(stages=stages, ctx=dummy_ctx).run()

    assert result.ok
    assert seen == {"slow": True, "fast": True}


def test_agent_executors_bound_concurrency(dummy_ctx, tmp_path):
    """Um agente com `executors: 1` nunca executa dois Stages ao mesmo tempo."""
    _require_imports()
    pool = AgentPool.from_definition([{"name": "solo", "executors": 1}], root=tmp_path / "ag")
    lock = threading.Lock()
    state = {"running": 0, "peak": 0}

    class _Counting:
        kind = StageKind.BUILD
        depends_on = []
        agent = "solo"
        when_exists = None

        def __init__(self, sid):
            self.id = sid

        def run(self, ctx, agent):
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            time.sleep(0.05)
            with lock:
                state["running"] -= 1
            return StageResult(stage_id=self.id, kind=self.kind, status=StageStatus.SUCCESS, summary="ok")

    stages = [_Counting("a"), _Counting("b"), _Counting("c")]

    result = Engine(stages=stages, ctx=dummy_ctx, agents=pool).run()

    assert result.ok
    assert state["peak"] == 1
