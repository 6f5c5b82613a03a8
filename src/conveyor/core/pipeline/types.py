# src/conveyor/core/pipeline/types.py
"""
Tipos canônicos do pipeline do Conveyor.

Componentes principais:
    - StageStatus → enum de estados finais (SUCCESS, SKIPPED, FAILED)
    - StageKind   → enum de classificação semântica de Stages
    - StageResult → estrutura imutável de resultado de execução

Invariantes:
    - Enums possuem valores textuais canônicos (serializáveis em JSON)
    - StageResult é imutável e seguro contra mutação acidental
    - Tipos não dependem de engine, agentes ou ferramentas externas
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class StageKind(str, Enum):
    """
    Tipos semânticos de Stages no pipeline.

    Tipos definidos:
        - CHECKOUT: obtenção do código-fonte a partir do controle de versão
        - BUILD: compilação / bundling via ferramenta externa
        - PACKAGE: empacotamento (ex.: imagem de container)
        - PUBLISH: envio de artefatos a um registry
        - DEPLOY: aplicação do arquivo de orquestração
        - VERIFY: verificação pós-deploy (health checks)
        - DIAGNOSTIC: coleta de logs e inspeções best-effort

    O Engine não utiliza `StageKind` para decidir execução; o valor é
    puramente informativo e vai para o Manifest.
    """
    CHECKOUT = "checkout"
    BUILD = "build"
    PACKAGE = "package"
    PUBLISH = "publish"
    DEPLOY = "deploy"
    VERIFY = "verify"
    DIAGNOSTIC = "diagnostic"


class StageStatus(str, Enum):
    """
    Estados finais possíveis da execução de um Stage.

    Estados definidos:
        - SUCCESS: execução concluída com sucesso
        - SKIPPED: execução não realizada (config, condição, dependência, abort)
        - FAILED: execução interrompida por erro

    Estados intermediários (ex.: running) não pertencem a este enum; eles
    existem apenas no Manifest enquanto a run está em andamento.
    """
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class StageResult:
    """
    Resultado imutável da execução de um Stage.

    Campos:
        - stage_id: identificador único do Stage
        - kind: tipo semântico do Stage
        - status: estado final da execução
        - summary: resumo textual da execução
        - metrics: métricas numéricas (ex.: duration_ms, attempts)
        - warnings: avisos não fatais (ex.: comando tolerado com exit != 0)
        - artifacts: referências a artefatos produzidos (stashes, imagens, logs)
        - payload: dados adicionais livres (inclui `error` em falhas)

    Uma instância nunca é alterada após criada; enriquecimentos são feitos
    via `dataclasses.replace`.
    """
    stage_id: str
    kind: StageKind
    status: StageStatus
    summary: str
    metrics: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    artifacts: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_id": self.stage_id,
            "kind": StageKind(self.kind).value if self.kind else None,
            "status": StageStatus(self.status).value,
            "summary": self.summary,
            "metrics": dict(self.metrics),
            "warnings": list(self.warnings),
            "artifacts": dict(self.artifacts),
            "payload": dict(self.payload),
        }
