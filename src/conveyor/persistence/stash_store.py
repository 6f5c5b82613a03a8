"""Relay canônico de artefatos entre agentes (stash/unstash).

Agentes não compartilham filesystem: o que um Stage produz no workspace
do seu agente só chega a um Stage de outro agente por transferência
explícita. Este módulo implementa essa transferência como uma Store
minimalista, sem acoplamento com o Engine.

Decisões (v1):
- Formato: tar.gz por stash, em `run_dir/stashes/<nome>.tar.gz`
- Sidecar JSON (`<nome>.json`) com lista de arquivos, bytes e sha256
- Padrões de inclusão/exclusão no estilo Ant (`**`, `*`, `?`)
- Exclusões padrão: diretórios `.git`
- Restash com o mesmo nome substitui o anterior (escrita atômica)

Limites explícitos:
- Não preserva symlinks (o conteúdo apontado é arquivado)
- Não faz limpeza automática de stashes entre runs
- Unstash recusa membros que escapem do diretório de destino
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import tarfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from conveyor.core.exceptions import (
    EmptyStashError,
    StashError,
    StashIntegrityError,
    StashNotFoundError,
)


DEFAULT_EXCLUDES = ("**/.git/**",)
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Converte um padrão Ant (`**/x/*.jar`) em regex ancorada."""
    pattern = pattern.strip()
    if pattern.startswith("./"):
        pattern = pattern[2:]
    i = 0
    out: List[str] = []
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


def _compile(patterns: Iterable[str]) -> List["re.Pattern[str]"]:
    compiled: List["re.Pattern[str]"] = []
    for p in patterns:
        if not p or not str(p).strip():
            continue
        p = str(p).strip().rstrip("/")
        compiled.append(_glob_to_regex(p))
        # um diretório nomeado inclui todo o seu conteúdo
        if not p.endswith("**"):
            compiled.append(_glob_to_regex(p + "/**"))
    return compiled


def select_files(
    root: Path,
    *,
    includes: Sequence[str] = ("**",),
    excludes: Sequence[str] = (),
    use_default_excludes: bool = True,
) -> List[str]:
    """Lista (ordenada) de caminhos relativos POSIX selecionados sob `root`."""
    inc = _compile(includes or ("**",))
    exc = _compile(list(excludes or ()) + (list(DEFAULT_EXCLUDES) if use_default_excludes else []))

    selected: List[str] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        if any(r.match(rel) for r in exc):
            continue
        if any(r.match(rel) for r in inc):
            selected.append(rel)
    return selected


def _sha256(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


@dataclass(frozen=True)
class StashMeta:
    """Metadata mínima (v1) de um stash persistido."""

    name: str
    files: List[str] = field(default_factory=list)
    bytes: int = 0
    sha256: str = ""
    agent: Optional[str] = None
    stage_id: Optional[str] = None
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "files": list(self.files),
            "bytes": self.bytes,
            "sha256": self.sha256,
            "agent": self.agent,
            "stage_id": self.stage_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StashMeta":
        return cls(
            name=str(data["name"]),
            files=list(data.get("files", []) or []),
            bytes=int(data.get("bytes", 0) or 0),
            sha256=str(data.get("sha256", "")),
            agent=data.get("agent"),
            stage_id=data.get("stage_id"),
            created_at=str(data.get("created_at", "")),
        )


class StashStore:
    """Store canônica (v1) para stash/unstash de artefatos de uma run."""

    def __init__(self, *, run_dir: Union[str, Path]):
        self.run_dir = Path(run_dir)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    @property
    def stash_dir(self) -> Path:
        return self.run_dir / "stashes"

    def archive_path(self, name: str) -> Path:
        return self.stash_dir / f"{name}.tar.gz"

    def meta_path(self, name: str) -> Path:
        return self.stash_dir / f"{name}.json"

    @staticmethod
    def _check_name(name: str) -> None:
        if not isinstance(name, str) or not _NAME_PATTERN.match(name):
            raise StashError(
                message=f"Invalid stash name: {name!r}",
                details={"name": name},
                hint="Use apenas letras, dígitos, '.', '_' e '-'.",
            )

    # ------------------------------------------------------------------
    # Stash / Unstash
    # ------------------------------------------------------------------
    def stash(
        self,
        name: str,
        source_dir: Union[str, Path],
        *,
        includes: Sequence[str] = ("**",),
        excludes: Sequence[str] = (),
        allow_empty: bool = False,
        use_default_excludes: bool = True,
        agent: Optional[str] = None,
        stage_id: Optional[str] = None,
    ) -> StashMeta:
        self._check_name(name)
        source = Path(source_dir)
        files = select_files(
            source,
            includes=includes,
            excludes=excludes,
            use_default_excludes=use_default_excludes,
        ) if source.exists() else []

        if not files and not allow_empty:
            raise EmptyStashError(
                message=f"No files matched for stash '{name}'",
                details={"name": name, "source": str(source), "includes": list(includes), "excludes": list(excludes)},
                hint="Ajuste os padrões `includes` ou declare allow_empty: true.",
            )

        self.stash_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.stash_dir / f".{name}.{threading.get_ident()}.tmp"
        with tarfile.open(tmp, mode="w:gz", dereference=True) as tf:
            for rel in files:
                tf.add(str(source / rel), arcname=rel, recursive=False)

        meta = StashMeta(
            name=name,
            files=files,
            bytes=tmp.stat().st_size,
            sha256=_sha256(tmp),
            agent=agent,
            stage_id=stage_id,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        with self._lock:
            os.replace(tmp, self.archive_path(name))
            self.meta_path(name).write_text(
                json.dumps(meta.to_dict(), ensure_ascii=False, indent=2, sort_keys=True),
                encoding="utf-8",
            )
        return meta

    def get(self, name: str) -> StashMeta:
        meta_file = self.meta_path(name)
        if not meta_file.exists() or not self.archive_path(name).exists():
            raise StashNotFoundError(
                message=f"Stash not found: {name}",
                details={"name": name, "available": self.list()},
                hint="Garanta que o Stage que produz o stash é dependência deste Stage e terminou com sucesso.",
            )
        return StashMeta.from_dict(json.loads(meta_file.read_text(encoding="utf-8")))

    def unstash(self, name: str, target_dir: Union[str, Path]) -> StashMeta:
        """Extrai o stash em `target_dir`, sobrescrevendo arquivos existentes."""
        self._check_name(name)
        meta = self.get(name)
        archive = self.archive_path(name)

        if _sha256(archive) != meta.sha256:
            raise StashIntegrityError(
                message=f"Checksum mismatch for stash '{name}'",
                details={"name": name, "expected": meta.sha256},
            )

        target = Path(target_dir)
        target.mkdir(parents=True, exist_ok=True)
        root = target.resolve()

        try:
            with tarfile.open(archive, mode="r:gz") as tf:
                for member in tf.getmembers():
                    dest = (root / member.name).resolve()
                    if member.name.startswith("/") or (dest != root and root not in dest.parents):
                        raise StashIntegrityError(
                            message=f"Unsafe member in stash '{name}': {member.name}",
                            details={"name": name, "member": member.name},
                        )
                    if member.isdir():
                        dest.mkdir(parents=True, exist_ok=True)
                        continue
                    if not member.isfile():
                        raise StashIntegrityError(
                            message=f"Unsupported member type in stash '{name}': {member.name}",
                            details={"name": name, "member": member.name},
                        )
                    src = tf.extractfile(member)
                    if src is None:
                        continue
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    with src, dest.open("wb") as out:
                        out.write(src.read())
                    os.chmod(dest, member.mode & 0o777 or 0o644)
        except tarfile.TarError as e:
            raise StashIntegrityError(
                message=f"Corrupted stash '{name}': {e}",
                details={"name": name},
            ) from e

        return meta

    def list(self) -> List[str]:
        if not self.stash_dir.exists():
            return []
        return sorted(p.name[: -len(".json")] for p in self.stash_dir.glob("*.json"))
