"""Persistência de artefatos de run (relay de stashes entre agentes)."""

from .stash_store import StashMeta, StashStore, select_files

__all__ = ["StashMeta", "StashStore", "select_files"]
