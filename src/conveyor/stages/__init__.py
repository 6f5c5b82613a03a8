"""Catálogo de tipos de Stage do Conveyor.

`STAGE_TYPES` mapeia o `type` declarado na definição para a fábrica
`from_spec(spec) -> Stage` correspondente.
"""

from typing import Callable, Dict

from conveyor.core.definition.schema import StageSpec

from .base import BaseStage, StashSpec
from .checkout import CheckoutStage
from .collect_logs import CollectLogsStage
from .compose import ComposeStage
from .health import HealthStage
from .image import ImageStage
from .shell import ShellStage, ShellStep


STAGE_TYPES: Dict[str, Callable[[StageSpec], BaseStage]] = {
    "shell": ShellStage.from_spec,
    "checkout": CheckoutStage.from_spec,
    "image": ImageStage.from_spec,
    "compose": ComposeStage.from_spec,
    "health": HealthStage.from_spec,
    "collect_logs": CollectLogsStage.from_spec,
}

__all__ = [
    "BaseStage",
    "CheckoutStage",
    "CollectLogsStage",
    "ComposeStage",
    "HealthStage",
    "ImageStage",
    "STAGE_TYPES",
    "ShellStage",
    "ShellStep",
    "StashSpec",
]
