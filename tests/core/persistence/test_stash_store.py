# tests/core/persistence/test_stash_store.py
"""
Testes do relay de artefatos entre agentes (StashStore).

Decisões (v1):
    - Stash é um tar.gz com sidecar JSON (arquivos, bytes, sha256)
    - Padrões Ant (`**`, `*`) para inclusão/exclusão; `.git` excluído por padrão
    - Unstash verifica integridade antes de extrair

Os testes usam dois diretórios distintos como workspaces de agentes.
"""

import hashlib
import io
import json
import tarfile

import pytest

try:
    from conveyor.core.exceptions import (
        EmptyStashError,
        StashError,
        StashIntegrityError,
        StashNotFoundError,
    )
    from conveyor.persistence import StashStore, select_files
except Exception as e:  # noqa: BLE001
    StashStore = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/conveyor/persistence/stash_store.py. Import error: {_IMPORT_ERR}")


@pytest.fixture
def producer(tmp_path):
    ws = tmp_path / "agents" / "builder-java"
    (ws / "target").mkdir(parents=True)
    (ws / "target" / "app.jar").write_bytes(b"JAR")
    (ws / "target" / "classes").mkdir()
    (ws / "target" / "classes" / "A.class").write_bytes(b"A")
    (ws / "src").mkdir()
    (ws / "src" / "Main.java").write_text("class Main {}", encoding="utf-8")
    (ws / ".git").mkdir()
    (ws / ".git" / "HEAD").write_text("ref: refs/heads/main", encoding="utf-8")
    return ws


@pytest.fixture
def store(tmp_path):
    return StashStore(run_dir=tmp_path / "run")


def test_select_files_patterns(producer):
    _require_imports()
    assert select_files(producer) == ["src/Main.java", "target/app.jar", "target/classes/A.class"]
    assert select_files(producer, includes=["**/*.jar"]) == ["target/app.jar"]
    assert select_files(producer, includes=["target"], excludes=["**/classes/**"]) == ["target/app.jar"]
    assert ".git/HEAD" in select_files(producer, use_default_excludes=False)


def test_stash_then_unstash_on_other_agent(store, producer, tmp_path):
    """O conteúdo chega íntegro ao workspace de outro agente."""
    _require_imports()
    meta = store.stash("dist", producer, includes=["target/**"], agent="builder-java", stage_id="backend")
    consumer = tmp_path / "agents" / "controller"

    restored = store.unstash("dist", consumer)

    assert meta.files == ["target/app.jar", "target/classes/A.class"]
    assert len(meta.sha256) == 64
    assert restored == meta
    assert (consumer / "target" / "app.jar").read_bytes() == b"JAR"
    assert not (consumer / "src").exists()
    assert store.get("dist").stage_id == "backend"
    assert store.list() == ["dist"]


def test_restash_replaces_previous(store, producer, tmp_path):
    _require_imports()
    store.stash("dist", producer, includes=["target/app.jar"])
    (producer / "target" / "app.jar").write_bytes(b"JAR2")
    store.stash("dist", producer, includes=["target/app.jar"])

    store.unstash("dist", tmp_path / "out")

    assert (tmp_path / "out" / "target" / "app.jar").read_bytes() == b"JAR2"


def test_empty_selection_raises_unless_allowed(store, producer):
    _require_imports()
    with pytest.raises(EmptyStashError):
        store.stash("none", producer, includes=["**/*.war"])

    meta = store.stash("none", producer, includes=["**/*.war"], allow_empty=True)
    assert meta.files == []


def test_unknown_stash_lists_available(store, producer, tmp_path):
    _require_imports()
    store.stash("dist", producer)

    with pytest.raises(StashNotFoundError) as exc:
        store.unstash("missing", tmp_path / "out")

    assert exc.value.details["available"] == ["dist"]


def test_tampered_archive_is_rejected(store, producer, tmp_path):
    _require_imports()
    store.stash("dist", producer)
    with store.archive_path("dist").open("ab") as fh:
        fh.write(b"garbage")

    with pytest.raises(StashIntegrityError):
        store.unstash("dist", tmp_path / "out")


@pytest.mark.parametrize("name", ["", "../escape", "a/b", " x"])
def test_invalid_names_are_rejected(store, producer, name):
    _require_imports()
    with pytest.raises(StashError):
        store.stash(name, producer)


def _forge_archive(store, name, members):
    """Reescreve o arquivo do stash com `members` e um sidecar coerente (sha256 válido)."""
    archive = store.archive_path(name)
    with tarfile.open(archive, mode="w:gz") as tf:
        for info, payload in members:
            if payload is None:
                tf.addfile(info)
            else:
                info.size = len(payload)
                tf.addfile(info, io.BytesIO(payload))
    meta = json.loads(store.meta_path(name).read_text(encoding="utf-8"))
    meta["sha256"] = hashlib.sha256(archive.read_bytes()).hexdigest()
    store.meta_path(name).write_text(json.dumps(meta), encoding="utf-8")


def test_member_escaping_target_is_refused(store, producer, tmp_path):
    """Um membro `../` nunca é escrito fora do workspace de destino."""
    _require_imports()
    store.stash("dist", producer)
    _forge_archive(store, "dist", [(tarfile.TarInfo("../../escaped.txt"), b"owned")])
    consumer = tmp_path / "agents" / "controller"

    with pytest.raises(StashIntegrityError, match="Unsafe member"):
        store.unstash("dist", consumer)

    assert not (tmp_path / "escaped.txt").exists()
    assert not (tmp_path / "agents" / "escaped.txt").exists()
    assert list(consumer.iterdir()) == []


def test_absolute_member_is_refused(store, producer, tmp_path):
    _require_imports()
    store.stash("dist", producer)
    _forge_archive(store, "dist", [(tarfile.TarInfo("/tmp/conveyor-escaped.txt"), b"owned")])

    with pytest.raises(StashIntegrityError, match="Unsafe member"):
        store.unstash("dist", tmp_path / "agents" / "controller")


@pytest.mark.parametrize("member_type", [tarfile.SYMTYPE, tarfile.LNKTYPE])
def test_link_members_are_refused(store, producer, tmp_path, member_type):
    """Apenas arquivos regulares e diretórios são extraídos; links são rejeitados."""
    _require_imports()
    store.stash("dist", producer)
    link = tarfile.TarInfo("target/app.jar")
    link.type = member_type
    link.linkname = "/etc/passwd"
    _forge_archive(store, "dist", [(link, None)])
    consumer = tmp_path / "agents" / "controller"

    with pytest.raises(StashIntegrityError, match="Unsupported member type"):
        store.unstash("dist", consumer)

    assert not (consumer / "target" / "app.jar").exists()
    assert not (consumer / "target" / "app.jar").is_symlink()
