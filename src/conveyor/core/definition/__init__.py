"""Conveyor — Pipeline Definition (core).

Componentes canônicos da **Pipeline Definition v1**:
 - parsing (YAML/JSON)
 - validação estrutural, expansão de grupos paralelos e dependências implícitas
 - resolução do ambiente (`${NOME}`)
 - materialização de Stages pelo catálogo de tipos
 - hashing canônico (rastreabilidade)
"""

from .builder import build_post, build_stages  # noqa: F401
from .errors import (  # noqa: F401
    DefinitionError,
    DefinitionFileNotFoundError,
    DefinitionParseError,
    DefinitionValidationError,
    UnknownStageTypeError,
    UnsupportedDefinitionFormatError,
)
from .hashing import compute_definition_hash  # noqa: F401
from .loader import load_definition  # noqa: F401
from .schema import (  # noqa: F401
    PipelineDefinition,
    StageSpec,
    check_stage_types,
    resolve_environment,
    validate_definition,
)
