"""Manifest loading from YAML/JSON files and streams."""

from __future__ import annotations

import json
import sys
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

import yaml

from .errors import ManifestLoadError

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass(frozen=True)
class LoadedManifest:
    """A decoded document and where it came from."""

    source: str
    index: int
    document: Any

    @property
    def location(self) -> str:
        return f"{self.source}#{self.index}"


def _expand_lists(doc: Any) -> Iterator[Any]:
    # `kubectl get -o yaml` wraps several resources in a List.
    if isinstance(doc, Mapping) and doc.get("kind") == "List" and isinstance(doc.get("items"), list):
        for item in doc["items"]:
            yield from _expand_lists(item)
    else:
        yield doc


def parse_manifests(text: str, *, source: str = "<string>") -> list[LoadedManifest]:
    """
    Decode every resource document in `text`.

    JSON is tried first when the text starts with '{' or '['; everything else
    is read as a (possibly multi-document) YAML stream. Empty documents are
    dropped; documents that are not mappings are kept so the evaluator can
    report them as structural errors.

    Raises:
        ManifestLoadError: If the text cannot be decoded
    """
    stripped = text.lstrip()
    docs: list[Any]
    if stripped.startswith(("{", "[")):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            docs = _load_yaml(text, source)
        else:
            docs = decoded if isinstance(decoded, list) else [decoded]
    else:
        docs = _load_yaml(text, source)

    out: list[LoadedManifest] = []
    for doc in docs:
        if doc is None:
            continue
        for item in _expand_lists(doc):
            out.append(LoadedManifest(source=source, index=len(out), document=item))
    return out


def _load_yaml(text: str, source: str) -> list[Any]:
    try:
        return list(yaml.safe_load_all(text))
    except yaml.YAMLError as exc:
        raise ManifestLoadError(f"{source}: cannot parse manifest: {exc}") from exc


def load_manifest_file(path: Path) -> list[LoadedManifest]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestLoadError(f"{path}: cannot read manifest: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise ManifestLoadError(f"{path}: manifest is not valid UTF-8: {exc.reason} at byte {exc.start}") from exc
    return parse_manifests(text, source=str(path))


def load_manifest_stream(stream: TextIO | None = None) -> list[LoadedManifest]:
    stream = stream or sys.stdin
    return parse_manifests(stream.read(), source="<stdin>")


def iter_manifest_files(paths: Iterable[Path]) -> Iterator[Path]:
    """Expand directories to the manifest files they contain (sorted, recursive)."""
    for path in paths:
        path = Path(path)
        if path.is_dir():
            for child in sorted(path.rglob("*")):
                if child.is_file() and child.suffix.lower() in MANIFEST_SUFFIXES:
                    yield child
        else:
            yield path


def load_manifests(targets: Iterable[str | Path]) -> list[LoadedManifest]:
    """Load manifests from files, directories, or '-' for stdin."""
    loaded: list[LoadedManifest] = []
    for target in targets:
        if str(target) == "-":
            loaded.extend(load_manifest_stream())
            continue
        for path in iter_manifest_files([Path(target)]):
            loaded.extend(load_manifest_file(path))
    return loaded
