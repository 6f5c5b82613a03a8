# src/conveyor/__init__.py
"""
Conveyor — engine declarativo para pipelines de build e deploy.

Este pacote raiz define o namespace público do Conveyor, um executor
mínimo de pipelines de CI/CD descritos em arquivo declarativo: checkout,
builds paralelos em agentes distintos, empacotamento em imagens de
container, publicação em registry, deploy via arquivo de orquestração e
health checks pós-deploy.

Princípios centrais:
    - O pipeline é um DAG explícito de Stages
    - Paralelismo é grosso (por Stage) e sincronizado em pontos de junção
    - Toda unidade de trabalho é delegada a ferramentas externas
    - Falhas são decididas por exit code, nunca de forma implícita

Arquitetura em alto nível:
    - core.config       → carregamento, merge e hashing de configuração
    - core.definition   → leitura e validação do arquivo de pipeline
    - core.pipeline     → protocolos, contexto de execução e registro de Stages
    - core.agents       → agentes, labels e workspaces isolados
    - core.engine       → planejamento (ondas paralelas) e execução
    - core.health       → verificação de serviços com retry limitado
    - core.traceability → Manifest e Event Log da run
    - persistence       → relay de artefatos (stash/unstash) entre agentes
    - stages            → tipos concretos de Stage
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
