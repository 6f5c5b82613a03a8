"""
Schema canônico — Pipeline Definition v1.

Formato (YAML/JSON):

    pipeline_version: "1.0"
    name: fullstack
    environment: {REGISTRY: registry.local:5000}
    agents:
      - {name: builder-java, labels: [java], executors: 1}
    stages:
      - {id: checkout, type: checkout, repository: ...}
      - id: build
        parallel:
          - {id: backend, type: shell, agent: java, steps: [...]}
          - {id: frontend, type: shell, agent: node, steps: [...]}
      - {id: deploy, type: compose, file: docker-compose.yml}
    post:
      failure: [{id: diagnostics, type: collect_logs, commands: [...]}]

Regras estruturais:
- `depends_on` omitido num item de topo → depende do item de topo anterior
  (o primeiro não tem dependências); `depends_on: []` remove a dependência.
- Filhos de um grupo `parallel` herdam o `depends_on` do grupo.
- Depender do id de um grupo equivale a depender de todos os filhos
  (ponto de junção).
- Ids são únicos entre Stages, grupos e handlers `post`.

A validação evita dependências externas (ex.: Pydantic) e é feita com
asserções explícitas, como no restante do core.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from conveyor.core.shell import UnresolvedVariableError, interpolate

from .errors import DefinitionValidationError, UnknownStageTypeError


SUPPORTED_VERSION = "1.0"
POST_CONDITIONS = ("success", "failure", "always")
RESERVED_KEYS = {"id", "type", "agent", "depends_on", "when_exists"}

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _is_non_empty_str(x: Any) -> bool:
    return isinstance(x, str) and bool(x.strip())


def _expect(cond: bool, msg: str) -> None:
    if not cond:
        raise DefinitionValidationError(msg)


@dataclass(frozen=True)
class StageSpec:
    """Stage normalizado: dependências já expandidas, opções do tipo separadas."""

    id: str
    type: str
    agent: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    when_exists: Optional[str] = None
    group: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "agent": self.agent,
            "depends_on": list(self.depends_on),
            "when_exists": self.when_exists,
            "group": self.group,
            "options": dict(self.options),
        }


@dataclass(frozen=True)
class PipelineDefinition:
    """Representação interna explícita da Pipeline Definition v1."""

    pipeline_version: str
    name: str
    environment: Dict[str, str]
    agents: List[Dict[str, Any]]
    stages: List[StageSpec]
    post: Dict[str, List[StageSpec]]
    groups: Dict[str, List[str]] = field(default_factory=dict)

    def stage_ids(self) -> List[str]:
        return [s.id for s in self.stages]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline_version": self.pipeline_version,
            "name": self.name,
            "environment": dict(self.environment),
            "agents": [dict(a) for a in self.agents],
            "stages": [s.to_dict() for s in self.stages],
            "post": {k: [s.to_dict() for s in v] for k, v in self.post.items()},
            "groups": {k: list(v) for k, v in self.groups.items()},
        }


def _as_id_list(value: Any, where: str) -> List[str]:
    if isinstance(value, str):
        value = [value]
    _expect(isinstance(value, list), f"{where}.depends_on must be a string or a list")
    for d in value:
        _expect(_is_non_empty_str(d), f"{where}.depends_on entries must be non-empty strings")
    return [str(d) for d in value]


def _validate_environment(env: Any) -> Dict[str, str]:
    env = env or {}
    _expect(isinstance(env, dict), "environment must be a mapping")
    out: Dict[str, str] = {}
    for k, v in env.items():
        _expect(isinstance(k, str) and bool(_ENV_NAME_PATTERN.match(k)), f"invalid environment variable name: {k!r}")
        _expect(
            isinstance(v, (str, int, float, bool)),
            f"environment.{k} must be a scalar",
        )
        out[k] = str(v).lower() if isinstance(v, bool) else str(v)
    return out


def _validate_agents(agents: Any) -> List[Dict[str, Any]]:
    agents = agents or []
    _expect(isinstance(agents, list), "agents must be a list")
    seen: set = set()
    out: List[Dict[str, Any]] = []
    for i, a in enumerate(agents):
        _expect(isinstance(a, dict), f"agents[{i}] must be a mapping")
        name = a.get("name")
        _expect(_is_non_empty_str(name) and bool(_ID_PATTERN.match(str(name))), f"agents[{i}].name is required")
        _expect(name not in seen, f"duplicate agent name: {name}")
        seen.add(name)
        labels = a.get("labels") or []
        _expect(isinstance(labels, list) and all(_is_non_empty_str(x) for x in labels),
                f"agents[{i}].labels must be a list of strings")
        executors = a.get("executors", 1)
        _expect(isinstance(executors, int) and not isinstance(executors, bool) and executors >= 1,
                f"agents[{i}].executors must be an integer >= 1")
        out.append({"name": name, "labels": list(labels), "executors": executors})
    return out


def _stage_entry(entry: Any, where: str, *, group: Optional[str], depends_on: List[str]) -> StageSpec:
    _expect(isinstance(entry, dict), f"{where} must be a mapping")
    _expect("parallel" not in entry, f"{where}: nested parallel groups are not supported")
    sid = entry.get("id")
    _expect(_is_non_empty_str(sid) and bool(_ID_PATTERN.match(str(sid))), f"{where}.id is required (letters, digits, '.', '_', '-')")
    stype = entry.get("type")
    _expect(_is_non_empty_str(stype), f"{where}.type is required")
    agent = entry.get("agent")
    _expect(agent is None or _is_non_empty_str(agent), f"{where}.agent must be a string")
    when_exists = entry.get("when_exists")
    _expect(when_exists is None or _is_non_empty_str(when_exists), f"{where}.when_exists must be a string")

    return StageSpec(
        id=str(sid),
        type=str(stype),
        agent=agent,
        depends_on=depends_on,
        when_exists=when_exists,
        group=group,
        options={k: v for k, v in entry.items() if k not in RESERVED_KEYS},
    )


def validate_definition(data: Any) -> PipelineDefinition:
    """Valida e materializa uma Pipeline Definition v1.

    Raises:
        DefinitionValidationError: em qualquer violação estrutural, incluindo
            dependência inexistente e ids duplicados.
    """
    _expect(isinstance(data, dict), "Pipeline definition must be a mapping/dict")

    pv = data.get("pipeline_version")
    _expect(pv is not None and str(pv).strip() != "", "pipeline_version is required")
    _expect(str(pv) == SUPPORTED_VERSION, f"pipeline_version must be '{SUPPORTED_VERSION}' in v1")

    name = data.get("name")
    _expect(_is_non_empty_str(name), "name is required")

    environment = _validate_environment(data.get("environment"))
    agents = _validate_agents(data.get("agents"))

    entries = data.get("stages")
    _expect(isinstance(entries, list) and entries, "stages must be a non-empty list")

    stages: List[StageSpec] = []
    groups: Dict[str, List[str]] = {}
    seen_ids: set = set()
    previous: Optional[str] = None

    def _claim(sid: str) -> None:
        _expect(sid not in seen_ids, f"duplicate stage id: {sid}")
        seen_ids.add(sid)

    for i, entry in enumerate(entries):
        where = f"stages[{i}]"
        _expect(isinstance(entry, dict), f"{where} must be a mapping")

        if "depends_on" in entry:
            top_deps = _as_id_list(entry.get("depends_on") or [], where)
        else:
            top_deps = [previous] if previous else []

        if "parallel" in entry:
            gid = entry.get("id")
            _expect(_is_non_empty_str(gid) and bool(_ID_PATTERN.match(str(gid))), f"{where}.id is required for parallel groups")
            children = entry.get("parallel")
            _expect(isinstance(children, list) and children, f"{where}.parallel must be a non-empty list")
            extra = sorted(set(entry) - {"id", "parallel", "depends_on"})
            _expect(not extra, f"{where}: unsupported keys in parallel group: {', '.join(extra)}")
            _claim(str(gid))
            child_ids: List[str] = []
            for j, child in enumerate(children):
                cwhere = f"{where}.parallel[{j}]"
                own = _as_id_list(child.get("depends_on") or [], cwhere) if isinstance(child, dict) else []
                spec = _stage_entry(child, cwhere, group=str(gid), depends_on=top_deps + [d for d in own if d not in top_deps])
                _claim(spec.id)
                stages.append(spec)
                child_ids.append(spec.id)
            groups[str(gid)] = child_ids
            previous = str(gid)
        else:
            spec = _stage_entry(entry, where, group=None, depends_on=top_deps)
            _claim(spec.id)
            stages.append(spec)
            previous = spec.id

    post_raw = data.get("post") or {}
    _expect(isinstance(post_raw, dict), "post must be a mapping")
    unknown = sorted(set(post_raw) - set(POST_CONDITIONS))
    _expect(not unknown, f"unknown post conditions: {', '.join(unknown)}")
    post: Dict[str, List[StageSpec]] = {}
    for cond in POST_CONDITIONS:
        handlers = post_raw.get(cond) or []
        _expect(isinstance(handlers, list), f"post.{cond} must be a list")
        specs: List[StageSpec] = []
        for j, h in enumerate(handlers):
            spec = _stage_entry(h, f"post.{cond}[{j}]", group=None, depends_on=[])
            _claim(spec.id)
            specs.append(spec)
        post[cond] = specs

    # expansão de dependências em grupos (fan-in) e verificação de existência
    stage_ids = {s.id for s in stages}
    expanded: List[StageSpec] = []
    for s in stages:
        deps: List[str] = []
        for d in s.depends_on:
            targets = groups.get(d, [d])
            for t in targets:
                _expect(t in stage_ids, f"stage '{s.id}' depends on unknown stage '{d}'")
                if t not in deps:
                    deps.append(t)
        expanded.append(StageSpec(
            id=s.id,
            type=s.type,
            agent=s.agent,
            depends_on=deps,
            when_exists=s.when_exists,
            group=s.group,
            options=s.options,
        ))

    return PipelineDefinition(
        pipeline_version=str(pv),
        name=str(name),
        environment=environment,
        agents=agents,
        stages=expanded,
        post=post,
        groups=groups,
    )


def resolve_environment(
    *layers: Mapping[str, Any],
    build_number: Optional[int] = None,
    process_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Resolve o ambiente da run a partir de camadas ordenadas.

    Cada camada (ex.: environment da definição, depois environment da
    config) sobrescreve as anteriores. Referências `${NOME}` são expandidas
    contra `BUILD_NUMBER`, as variáveis já resolvidas e o ambiente do
    processo, nessa prioridade.

    Raises:
        DefinitionValidationError: referência sem valor.
    """
    resolved: Dict[str, str] = {}
    if build_number is not None:
        resolved["BUILD_NUMBER"] = str(build_number)

    for layer in layers:
        for k, v in (layer or {}).items():
            lookup: Dict[str, str] = dict(process_env or {})
            lookup.update(resolved)
            try:
                resolved[str(k)] = interpolate(str(v), lookup)
            except UnresolvedVariableError as e:
                raise DefinitionValidationError(
                    f"environment.{k}: unresolved reference '${{{e.name}}}'"
                ) from e
    return resolved


def check_stage_types(definition: PipelineDefinition, known: Iterable[str]) -> None:
    """Garante que todo Stage (inclusive handlers `post`) tem tipo conhecido."""
    known_set = set(known)
    for spec in _all_specs(definition):
        if spec.type not in known_set:
            raise UnknownStageTypeError(
                f"stage '{spec.id}' has unknown type '{spec.type}' (known: {', '.join(sorted(known_set))})"
            )


def _all_specs(definition: PipelineDefinition) -> Sequence[StageSpec]:
    out: List[StageSpec] = list(definition.stages)
    for cond in POST_CONDITIONS:
        out.extend(definition.post.get(cond, []))
    return out
