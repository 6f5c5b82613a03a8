"""Materialização de Stages a partir da definição validada.

O catálogo de tipos (`stage_types`) mapeia o `type` declarado para uma
fábrica `factory(spec) -> Stage`. Opções inválidas de um tipo são
reportadas como erro de definição, antes de qualquer execução.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping

from conveyor.core.exceptions import StageConfigurationError
from conveyor.core.pipeline.registry import StageRegistry
from conveyor.core.pipeline.stage import Stage

from .errors import DefinitionValidationError
from .schema import POST_CONDITIONS, PipelineDefinition, StageSpec, check_stage_types


StageFactory = Callable[[StageSpec], Any]


def _build_one(spec: StageSpec, stage_types: Mapping[str, StageFactory]) -> Stage:
    factory = stage_types[spec.type]
    try:
        stage = factory(spec)
    except StageConfigurationError as e:
        raise DefinitionValidationError(f"stage '{spec.id}': {e.message}") from e
    if not isinstance(stage, Stage):
        raise DefinitionValidationError(f"stage type '{spec.type}' did not produce a Stage")
    return stage


def build_stages(definition: PipelineDefinition, stage_types: Mapping[str, StageFactory]) -> List[Stage]:
    """Instancia os Stages principais, na ordem de declaração.

    Raises:
        UnknownStageTypeError: `type` fora do catálogo.
        DefinitionValidationError: opções inválidas para o tipo.
    """
    check_stage_types(definition, stage_types.keys())
    registry = StageRegistry()
    for spec in definition.stages:
        registry.add(_build_one(spec, stage_types))
    return registry.list()


def build_post(definition: PipelineDefinition, stage_types: Mapping[str, StageFactory]) -> Dict[str, List[Stage]]:
    """Instancia os handlers `post` por condição (success/failure/always)."""
    check_stage_types(definition, stage_types.keys())
    return {
        cond: [_build_one(spec, stage_types) for spec in definition.post.get(cond, [])]
        for cond in POST_CONDITIONS
    }
