# src/conveyor/core/__init__.py
"""
Core do Conveyor.

Este pacote reúne as responsabilidades essenciais para planejar,
executar e rastrear runs de pipeline, sem conhecer as ferramentas
externas concretas (build tool, container engine, orquestrador).

Componentes principais:
    - config       → resolução de configuração (merge, validação estrutural, hashing)
    - definition   → arquivo de pipeline (stages, agentes, ambiente, post)
    - pipeline     → protocolo de Stage, contexto de execução e registry
    - agents       → resolução de labels e workspaces por agente
    - engine       → planner (DAG + ondas) e execução paralela controlada
    - shell        → execução de comandos com política de exit code
    - health       → checks HTTP/TCP/comando com retry limitado
    - traceability → Manifest e Event Log

Limites explícitos:
    - Não define comandos de ferramentas específicas
    - Não gerencia credenciais (apenas referências a variáveis de ambiente)
    - Não agenda agentes remotos
"""
