# tests/conftest.py
"""
Fixtures compartilhados para testes do Conveyor.

Este módulo define fixtures reutilizáveis que fornecem:
- configurações mínimas e determinísticas
- contexto de execução controlado (RunContext) com run_dir temporário
- agentes com workspaces isolados sob `tmp_path`
- Stages dummy para testes estruturais do planner e do Engine

Decisões arquiteturais:
    - Fixtures são mantidas simples e explícitas
    - Stages dummy utilizam duck typing em vez de herança
    - Imports do core são realizados de forma lazy para melhorar a
      clareza de erros durante falhas de import

Limites explícitos:
    - Nenhuma fixture executa pipeline real
    - Nenhuma fixture invoca ferramentas externas (git, docker)
"""

import threading
import time
from datetime import datetime, timezone

import pytest


# =====================================================
# Config fixtures
# =====================================================

@pytest.fixture
def project_like_config_defaults_yaml() -> str:
    """
    YAML de configuração padrão (defaults) semelhante ao `config/defaults.yaml`.

    Usado por testes do loader, do deep-merge e do hashing pós-merge.
    """
    return """\
engine:
  fail_fast: true
  max_parallel: 4
health:
  attempts: 5
  interval_seconds: 10
stages:
  build:
    enabled: true
  deploy:
    enabled: true
"""


@pytest.fixture
def project_like_config_local_yaml() -> str:
    """YAML de overrides locais: apenas o que muda em relação aos defaults."""
    return """\
engine:
  max_parallel: 2
stages:
  deploy:
    enabled: false
"""


# =====================================================
# Pipeline fixtures (Stage + RunContext + agentes)
# =====================================================

@pytest.fixture
def dummy_config() -> dict:
    """
    Configuração mínima e válida, já resolvida, para testes do Engine.

    Invariantes:
        - `fail_fast` explicitamente habilitado
        - `max_parallel` permite paralelismo real numa onda
        - Não depende de arquivos nem de variáveis de ambiente
    """
    return {
        "engine": {"fail_fast": True, "max_parallel": 4},
        "stages": {"checkout": {"enabled": True}},
        "health": {"attempts": 3, "interval_seconds": 0, "timeout_seconds": 1},
    }


@pytest.fixture
def dummy_ctx(dummy_config, tmp_path):
    """
    RunContext determinístico com `run_dir` em `tmp_path`.

    `run_id` e `created_at` são fixos; `BUILD_NUMBER` vale 42.
    """
    from conveyor.core.pipeline.context import RunContext

    run_dir = tmp_path / "run"
    run_dir.mkdir()
    return RunContext(
        run_id="run-test-001",
        created_at=datetime(2026, 1, 16, 0, 0, 0, tzinfo=timezone.utc),
        config=dummy_config,
        env={"BUILD_NUMBER": "42"},
        meta={"source": "pytest", "run_dir": str(run_dir), "build_number": 42},
    )


@pytest.fixture
def agent_pool(tmp_path):
    """Pool com dois agentes (`builder-java`/`java`, `builder-node`/`node`) de workspaces isolados."""
    from conveyor.core.agents import AgentPool

    return AgentPool.from_definition(
        [
            {"name": "builder-java", "labels": ["java"]},
            {"name": "builder-node", "labels": ["node"]},
        ],
        root=tmp_path / "agents",
    )


@pytest.fixture
def DummyStage():
    """
    Fixture factory que fornece uma implementação mínima e duck-typed de um Stage.

    A classe retornada:
    - expõe `id`, `kind`, `depends_on` e `agent`
    - registra um artefato `<id>.ok` e o agente usado no RunContext
    - pode falhar deliberadamente (`fail=True`) ou dormir (`delay`)
      para testes de paralelismo

    Returns:
        type: Classe _DummyStage que pode ser instanciada pelos testes.
    """
    from conveyor.core.pipeline.types import StageKind, StageResult, StageStatus

    class _DummyStage:
        def __init__(
            self,
            stage_id: str = "build",
            kind: StageKind = StageKind.BUILD,
            depends_on=None,
            agent=None,
            fail: bool = False,
            delay: float = 0.0,
            when_exists=None,
            barrier=None,
        ):
            self.id = stage_id
            self.kind = kind
            self.depends_on = depends_on or []
            self.agent = agent
            self.fail = fail
            self.delay = delay
            self.when_exists = when_exists
            self.barrier = barrier
            self.calls = 0

        def run(self, ctx, agent):
            self.calls += 1
            if self.barrier is not None:
                self.barrier.wait(timeout=5)
            if self.delay:
                time.sleep(self.delay)
            if self.fail:
                raise RuntimeError(f"{self.id} boom")
            ctx.set_artifact(f"{self.id}.ok", True)
            ctx.set_artifact(f"{self.id}.agent", agent.name)
            return StageResult(
                stage_id=self.id,
                kind=self.kind,
                status=StageStatus.SUCCESS,
                summary="dummy ok",
                metrics={},
                warnings=[],
                artifacts={"ok": f"{self.id}.ok"},
                payload={"note": "dummy"},
            )

    return _DummyStage


@pytest.fixture
def barrier_factory():
    """Cria `threading.Barrier(n)`: só libera se `n` Stages estiverem executando ao mesmo tempo."""
    return lambda n: threading.Barrier(n)


@pytest.fixture
def no_sleep():
    """Substituto de `time.sleep` que apenas registra as esperas pedidas."""
    calls = []

    def _sleep(seconds):
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep
