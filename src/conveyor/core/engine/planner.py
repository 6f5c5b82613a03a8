# src/conveyor/core/engine/planner.py
"""
Planejador de execução do pipeline (DAG).

Este módulo valida a estrutura do pipeline e produz:
    - uma ordem topológica determinística dos Stages (`plan_execution`)
    - a divisão dessa ordem em ondas paralelas (`plan_waves`)

Uma onda é o conjunto de Stages cujas dependências estão todas em ondas
anteriores. Stages de uma mesma onda formam o fan-out paralelo; o fim de
uma onda é o ponto de junção (fan-in) antes da próxima.

Princípios fundamentais:
    - O pipeline deve formar um DAG válido
    - A ordenação é determinística para a mesma entrada
    - Validação estrutural ocorre antes da execução

Decisões arquiteturais:
    - Ordenação topológica determinística (Kahn modificado)
    - Empates são resolvidos por ordem lexicográfica de `stage.id`
    - Ondas são níveis de profundidade no grafo (maior caminho até a raiz)
    - Erros estruturais são tratados como falhas fatais

Limites explícitos:
    - Não executa Stages
    - Não interage com RunContext nem com agentes
    - Não decide políticas de execução
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Set

from conveyor.core.pipeline.stage import Stage


class UnknownDependencyError(ValueError):
    """
    Exceção levantada quando um Stage referencia uma dependência inexistente.

    Dependências devem ser explícitas e resolvíveis; a validação ocorre
    antes de qualquer execução e nenhum Stage ausente é inferido.
    """


class CycleDetectedError(ValueError):
    """
    Exceção levantada quando o grafo de dependências contém um ciclo.

    Nenhuma ordem topológica válida existe nesta condição e nenhuma
    execução parcial é permitida.
    """


def _index(stages: Iterable[Stage]) -> Dict[str, Stage]:
    by_id: Dict[str, Stage] = {}
    for s in stages:
        sid = getattr(s, "id", None)
        if not isinstance(sid, str) or not sid.strip():
            raise ValueError("stage.id must be a non-empty string")
        if sid in by_id:
            raise ValueError(f"Duplicate stage id: {sid}")
        by_id[sid] = s
    return by_id


def _dependencies(by_id: Dict[str, Stage]) -> Dict[str, List[str]]:
    deps: Dict[str, List[str]] = {}
    for sid, s in by_id.items():
        d = list(getattr(s, "depends_on", []) or [])
        for dep in d:
            if dep not in by_id:
                raise UnknownDependencyError(f"Stage '{sid}' depends on unknown stage '{dep}'")
        deps[sid] = d
    return deps


def plan_execution(stages: Iterable[Stage]) -> List[Stage]:
    """
    Valida e produz uma ordem de execução topológica determinística.

    Sempre que múltiplos Stages estiverem prontos, a escolha é feita por
    ordem lexicográfica do `stage.id`.

    Args:
        stages (Iterable[Stage]): Stages declarativos do pipeline.

    Returns:
        List[Stage]: Stages em ordem topológica determinística.

    Raises:
        ValueError: Se algum Stage possuir `id` inválido ou duplicado.
        UnknownDependencyError: Se um Stage declarar dependência inexistente.
        CycleDetectedError: Se houver ciclo no grafo de dependências.
    """
    by_id = _index(stages)
    deps = _dependencies(by_id)

    incoming_count: Dict[str, int] = {sid: 0 for sid in by_id}
    outgoing: Dict[str, Set[str]] = {sid: set() for sid in by_id}

    for sid, dlist in deps.items():
        incoming_count[sid] = len(set(dlist))
        for dep in set(dlist):
            outgoing[dep].add(sid)

    ready: List[str] = sorted(sid for sid, c in incoming_count.items() if c == 0)
    order_ids: List[str] = []

    while ready:
        sid = ready.pop(0)  # menor lexicográfico
        order_ids.append(sid)
        for child in sorted(outgoing[sid]):
            incoming_count[child] -= 1
            if incoming_count[child] == 0:
                ready.append(child)
                ready.sort()

    if len(order_ids) != len(by_id):
        stuck = sorted(set(by_id) - set(order_ids))
        raise CycleDetectedError(f"Cycle detected in stage dependency graph: {', '.join(stuck)}")

    return [by_id[sid] for sid in order_ids]


def plan_waves(stages: Iterable[Stage]) -> List[List[Stage]]:
    """
    Agrupa os Stages em ondas de execução paralela.

    A onda de um Stage é `1 + max(onda das dependências)` (0 sem
    dependências). Dentro de cada onda, Stages seguem a ordem de
    `plan_execution`.

    Raises:
        Os mesmos erros estruturais de `plan_execution`.
    """
    ordered = plan_execution(stages)
    level: Dict[str, int] = {}
    for s in ordered:
        deps = list(getattr(s, "depends_on", []) or [])
        level[s.id] = 1 + max((level[d] for d in deps), default=-1)

    waves: List[List[Stage]] = []
    for s in ordered:
        n = level[s.id]
        while len(waves) <= n:
            waves.append([])
        waves[n].append(s)
    return waves
