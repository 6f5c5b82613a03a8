# tests/core/definition/test_definition_schema.py
"""
Testes da validação estrutural da Pipeline Definition v1.

Os testes asseguram que:
- itens de topo sem `depends_on` dependem do item anterior (sequência)
- filhos de um grupo `parallel` herdam o `depends_on` do grupo
- depender de um grupo equivale a depender de todos os seus filhos
- ids são únicos entre Stages, grupos e handlers `post`
- opções específicas do tipo vão para `StageSpec.options`
- violações estruturais levantam `DefinitionValidationError`
"""

import copy

import pytest

try:
    from conveyor.core.definition import (
        DefinitionValidationError,
        UnknownStageTypeError,
        check_stage_types,
        validate_definition,
    )
except Exception as e:  # noqa: BLE001
    validate_definition = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/conveyor/core/definition/schema.py. Import error: {_IMPORT_ERR}")


BASE = {
    "pipeline_version": "1.0",
    "name": "fullstack",
    "environment": {"REGISTRY": "registry.local:5000", "DEBUG": True, "REPLICAS": 2},
    "agents": [
        {"name": "builder-java", "labels": ["java"]},
        {"name": "builder-node", "labels": ["node"], "executors": 2},
    ],
    "stages": [
        {"id": "checkout", "type": "checkout", "repository": "https://example.com/app.git"},
        {
            "id": "build",
            "parallel": [
                {"id": "backend", "type": "shell", "agent": "java", "steps": ["mvn package"]},
                {"id": "frontend", "type": "shell", "agent": "node", "steps": ["npm ci"], "when_exists": "package.json"},
            ],
        },
        {"id": "deploy", "type": "compose", "file": "docker-compose.yml"},
        {"id": "verify", "type": "health", "checks": []},
    ],
    "post": {"failure": [{"id": "diagnostics", "type": "collect_logs", "commands": ["docker ps"]}]},
}


def _data(**overrides):
    d = copy.deepcopy(BASE)
    d.update(overrides)
    return d


def _by_id(definition):
    return {s.id: s for s in definition.stages}


def test_valid_definition_is_normalized():
    _require_imports()
    d = validate_definition(_data())
    s = _by_id(d)

    assert d.name == "fullstack"
    assert d.stage_ids() == ["checkout", "backend", "frontend", "deploy", "verify"]
    assert d.groups == {"build": ["backend", "frontend"]}
    assert s["checkout"].depends_on == []
    assert s["backend"].depends_on == ["checkout"]
    assert s["backend"].group == "build"
    assert s["frontend"].when_exists == "package.json"
    assert s["deploy"].depends_on == ["backend", "frontend"]
    assert s["verify"].depends_on == ["deploy"]
    assert s["checkout"].options == {"repository": "https://example.com/app.git"}
    assert [h.id for h in d.post["failure"]] == ["diagnostics"]
    assert d.post["success"] == [] and d.post["always"] == []


def test_environment_values_become_strings():
    _require_imports()
    d = validate_definition(_data())

    assert d.environment == {"REGISTRY": "registry.local:5000", "DEBUG": "true", "REPLICAS": "2"}


def test_agents_are_normalized_with_default_executors():
    _require_imports()
    d = validate_definition(_data())

    assert d.agents[0] == {"name": "builder-java", "labels": ["java"], "executors": 1}
    assert d.agents[1]["executors"] == 2


def test_explicit_empty_depends_on_breaks_the_chain():
    """`depends_on: []` num item de topo remove a dependência implícita."""
    _require_imports()
    data = _data()
    data["stages"][3]["depends_on"] = []

    s = _by_id(validate_definition(data))

    assert s["verify"].depends_on == []


def test_child_depends_on_is_merged_with_group():
    _require_imports()
    data = _data()
    data["stages"].insert(1, {"id": "lint", "type": "shell", "steps": ["true"]})
    data["stages"][2]["depends_on"] = ["checkout"]
    data["stages"][2]["parallel"][1]["depends_on"] = ["lint"]

    s = _by_id(validate_definition(data))

    assert s["backend"].depends_on == ["checkout"]
    assert s["frontend"].depends_on == ["checkout", "lint"]


def test_depends_on_accepts_a_string():
    _require_imports()
    data = _data()
    data["stages"][2]["depends_on"] = "checkout"

    assert _by_id(validate_definition(data))["deploy"].depends_on == ["checkout"]


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda d: d.update(pipeline_version="2.0"), "pipeline_version"),
        (lambda d: d.pop("name"), "name is required"),
        (lambda d: d.update(stages=[]), "stages must be a non-empty list"),
        (lambda d: d["stages"].append({"id": "backend", "type": "shell"}), "duplicate stage id: backend"),
        (lambda d: d["post"]["failure"][0].update(id="deploy"), "duplicate stage id: deploy"),
        (lambda d: d["stages"][2].update(depends_on=["ghost"]), "unknown stage 'ghost'"),
        (lambda d: d["stages"][0].pop("type"), "type is required"),
        (lambda d: d["stages"][1].update(agent="java"), "unsupported keys"),
        (lambda d: d["stages"][1]["parallel"].append({"id": "n", "parallel": []}), "nested parallel"),
        (lambda d: d.update(post={"unstable": []}), "unknown post conditions"),
        (lambda d: d.update(environment={"1BAD": "x"}), "invalid environment variable name"),
        (lambda d: d.update(environment={"LIST": [1]}), "must be a scalar"),
        (lambda d: d["agents"].append({"name": "builder-java"}), "duplicate agent name"),
        (lambda d: d["agents"][0].update(executors=0), "executors"),
        (lambda d: d["stages"][0].update(id="bad id"), "id is required"),
    ],
)
def test_structural_violations(mutate, message):
    _require_imports()
    data = _data()
    mutate(data)

    with pytest.raises(DefinitionValidationError, match=message):
        validate_definition(data)


def test_check_stage_types_covers_post_handlers():
    """Tipo desconhecido num handler `post` também é detectado antes da run."""
    _require_imports()
    d = validate_definition(_data())

    check_stage_types(d, {"checkout", "shell", "compose", "health", "collect_logs"})
    with pytest.raises(UnknownStageTypeError, match="diagnostics"):
        check_stage_types(d, {"checkout", "shell", "compose", "health"})


def test_to_dict_is_serializable():
    _require_imports()
    out = validate_definition(_data()).to_dict()

    assert out["stages"][1]["group"] == "build"
    assert out["post"]["failure"][0]["type"] == "collect_logs"
