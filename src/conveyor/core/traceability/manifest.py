# src/conveyor/core/traceability/manifest.py
"""
Manifest v1: registro auditável de uma run do Conveyor.

O Manifest consolida, de forma determinística:
    - metadados da run (run_id, build_number, versão, status final)
    - hashes das entradas (config efetiva e definição do pipeline)
    - estado incremental de cada Stage
    - Event Log ordenado de eventos explícitos

Princípios fundamentais:
    - Nenhum evento é emitido implicitamente
    - Toda mutação ocorre por chamadas explícitas da API
    - A ordem do Event Log reflete a ordem de chamada
    - O Manifest é serializável e reconstruível (round-trip)

Decisões arquiteturais:
    - UTC é o timezone canônico de todos os timestamps
    - Persistência em JSON determinístico (`sort_keys=True`)
    - Funções aceitam o Manifest como objeto ou como dict equivalente

Limites explícitos:
    - Não executa pipeline
    - Não decide políticas de execução (fail-fast, skip)
    - Não é thread-safe por si só: o Engine serializa as chamadas
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    """Normaliza `dt` para timezone-aware em UTC (naive é assumido UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _ensure_tzaware_utc(dt).isoformat()


def _ms_between(start: datetime, end: datetime) -> int:
    s = _ensure_tzaware_utc(start)
    e = _ensure_tzaware_utc(end)
    return max(0, int((e - s).total_seconds() * 1000))


@dataclass
class RunManifest:
    """
    Estrutura canônica do Manifest v1.

    Campos:
        - run: metadados da execução (run_id, started_at, conveyor_version,
          build_number e, ao final, status/finished_at/duration_ms)
        - inputs: hashes da configuração e da definição
        - stages: estado incremental de cada Stage, indexado por stage_id
        - events: Event Log ordenado
    """

    run: Dict[str, Any]
    inputs: Dict[str, Any]
    stages: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Cópia serializável e independente do estado interno."""
        return {
            "run": dict(self.run),
            "inputs": dict(self.inputs),
            "stages": {k: dict(v) for k, v in self.stages.items()},
            "events": [dict(e) for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunManifest":
        return cls(
            run=dict(data.get("run", {})),
            inputs=dict(data.get("inputs", {})),
            stages={k: dict(v) for k, v in (data.get("stages", {}) or {}).items()},
            events=[dict(e) for e in (data.get("events", []) or [])],
        )


ManifestLike = Union[RunManifest, Dict[str, Any]]


def create_manifest(
    *,
    run_id: str,
    started_at: datetime,
    conveyor_version: str,
    config_hash: str,
    definition_hash: str,
    build_number: Optional[int] = None,
) -> RunManifest:
    """
    Cria o Manifest inicial de uma run.

    ⚠️ Esta função **não emite eventos**: o Event Log inicia vazio e só é
    preenchido por `add_event` e pelas funções `stage_*` / `run_finished`.

    Args:
        run_id (str): Identificador único da run.
        started_at (datetime): Início da run (normalizado para UTC).
        conveyor_version (str): Versão do Conveyor utilizada.
        config_hash (str): Hash canônico da configuração efetiva.
        definition_hash (str): Hash canônico da definição do pipeline.
        build_number (Optional[int]): Número do build (tag das imagens).

    Returns:
        RunManifest: Manifest com `stages` e `events` vazios.
    """
    started_at = _ensure_tzaware_utc(started_at)
    return RunManifest(
        run={
            "run_id": run_id,
            "started_at": _iso(started_at),
            "conveyor_version": conveyor_version,
            "build_number": build_number,
        },
        inputs={
            "config_hash": config_hash,
            "definition_hash": definition_hash,
        },
        stages={},
        events=[],
    )


def _get_manifest(manifest: ManifestLike) -> Tuple[RunManifest, bool]:
    """Normaliza para `RunManifest`; o bool indica se a entrada era um dict."""
    if isinstance(manifest, RunManifest):
        return manifest, False
    return RunManifest.from_dict(manifest), True


def _sync(manifest: ManifestLike, m: RunManifest, is_dict: bool) -> None:
    if is_dict:
        manifest.clear()  # type: ignore[union-attr]
        manifest.update(m.to_dict())  # type: ignore[union-attr]


def add_event(
    manifest: ManifestLike,
    *,
    event_type: str,
    ts: datetime,
    stage_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Adiciona exatamente um evento ao Event Log.

    Eventos não são reordenados nem deduplicados; `event_type` não é
    validado semanticamente.
    """
    ts = _ensure_tzaware_utc(ts)
    m, is_dict = _get_manifest(manifest)

    ev: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso(ts)}
    if stage_id is not None:
        ev["stage_id"] = stage_id
    if payload is not None:
        ev["payload"] = payload

    m.events.append(ev)
    _sync(manifest, m, is_dict)


def stage_started(
    manifest: ManifestLike,
    *,
    stage_id: str,
    kind: str,
    agent: Optional[str],
    ts: datetime,
) -> None:
    """Marca o Stage como `running` no agente indicado e registra `stage_started`."""
    ts = _ensure_tzaware_utc(ts)
    m, is_dict = _get_manifest(manifest)

    m.stages.setdefault(stage_id, {})
    m.stages[stage_id].update(
        {
            "stage_id": stage_id,
            "kind": kind,
            "agent": agent,
            "status": "running",
            "started_at": _iso(ts),
        }
    )

    add_event(m, event_type="stage_started", ts=ts, stage_id=stage_id, payload={"kind": kind, "agent": agent})
    _sync(manifest, m, is_dict)


def stage_finished(
    manifest: ManifestLike,
    *,
    stage_id: str,
    ts: datetime,
    result: Dict[str, Any],
) -> None:
    """
    Registra a conclusão de um Stage (status, duração, métricas, warnings, artefatos).

    A duração é calculada a partir de `started_at` quando disponível; o
    status final é o fornecido em `result` (padrão `success`).
    """
    ts = _ensure_tzaware_utc(ts)
    m, is_dict = _get_manifest(manifest)

    s = m.stages.setdefault(stage_id, {"stage_id": stage_id})
    started_iso = s.get("started_at")
    started_dt = datetime.fromisoformat(started_iso) if started_iso else ts

    status = result.get("status", "success")
    s.update(
        {
            "status": status,
            "finished_at": _iso(ts),
            "duration_ms": _ms_between(started_dt, ts),
            "summary": result.get("summary"),
            "metrics": result.get("metrics", {}) or {},
            "warnings": result.get("warnings", []) or [],
            "artifacts": result.get("artifacts", {}) or {},
        }
    )

    add_event(
        m,
        event_type="stage_finished",
        ts=ts,
        stage_id=stage_id,
        payload={"status": status, "duration_ms": s.get("duration_ms", 0)},
    )
    _sync(manifest, m, is_dict)


def stage_failed(
    manifest: ManifestLike,
    *,
    stage_id: str,
    ts: datetime,
    error: Dict[str, Any],
) -> None:
    """Marca o Stage como `failed` com o payload canônico de erro."""
    ts = _ensure_tzaware_utc(ts)
    m, is_dict = _get_manifest(manifest)

    s = m.stages.setdefault(stage_id, {"stage_id": stage_id})
    started_iso = s.get("started_at")
    s.update(
        {
            "status": "failed",
            "finished_at": _iso(ts),
            "error": error,
        }
    )
    if started_iso:
        s["duration_ms"] = _ms_between(datetime.fromisoformat(started_iso), ts)

    add_event(m, event_type="stage_failed", ts=ts, stage_id=stage_id, payload={"error": error})
    _sync(manifest, m, is_dict)


def stage_skipped(
    manifest: ManifestLike,
    *,
    stage_id: str,
    kind: str,
    ts: datetime,
    reason: str,
) -> None:
    """Registra um Stage que não executou (config, condição, dependência, abort)."""
    ts = _ensure_tzaware_utc(ts)
    m, is_dict = _get_manifest(manifest)

    s = m.stages.setdefault(stage_id, {"stage_id": stage_id})
    s.update({"stage_id": stage_id, "kind": kind, "status": "skipped", "summary": reason})

    add_event(m, event_type="stage_skipped", ts=ts, stage_id=stage_id, payload={"reason": reason})
    _sync(manifest, m, is_dict)


def run_finished(
    manifest: ManifestLike,
    *,
    status: str,
    ts: datetime,
) -> None:
    """Fecha a run com o status final e a duração total."""
    ts = _ensure_tzaware_utc(ts)
    m, is_dict = _get_manifest(manifest)

    started_iso = m.run.get("started_at")
    started_dt = datetime.fromisoformat(started_iso) if started_iso else ts
    m.run.update(
        {
            "status": status,
            "finished_at": _iso(ts),
            "duration_ms": _ms_between(started_dt, ts),
        }
    )

    add_event(m, event_type="run_finished", ts=ts, payload={"status": status})
    _sync(manifest, m, is_dict)


def save_manifest(manifest: ManifestLike, path: Path) -> None:
    """
    Persiste o Manifest em JSON determinístico (chaves ordenadas).

    Diretórios intermediários são criados; o Manifest em memória não é
    alterado.

    Raises:
        OSError: falha ao criar diretórios ou escrever o arquivo.
        TypeError: conteúdo não serializável em JSON.
    """
    data = manifest.to_dict() if isinstance(manifest, RunManifest) else manifest
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")


def load_manifest(path: Path) -> RunManifest:
    """
    Restaura um Manifest persistido por `save_manifest`.

    Raises:
        OSError: falha de leitura.
        json.JSONDecodeError: JSON inválido.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    return RunManifest.from_dict(data)
