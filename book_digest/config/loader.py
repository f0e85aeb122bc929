"""Read and write global and per-source configuration files.

Layout under the book-digest home (``$BOOK_DIGEST_HOME`` or the repository
root)::

    data/global_config.yaml
    data/sources/<slug>.yaml      one SourceConfig per file (.yml/.json accepted)
    logs/
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

import yaml

from .models import CatalogProvider, GlobalConfig, SourceConfig

HOME_ENV = "BOOK_DIGEST_HOME"
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
SOURCE_CONFIG_SUFFIX = ".yaml"


def _load_yaml(text: str) -> Any:
    return yaml.safe_load(text) or {}


def _dump_yaml(payload: dict) -> str:
    return yaml.safe_dump(payload, allow_unicode=True, sort_keys=False)


def _dump_json(payload: dict) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


_CODECS: dict[str, tuple[Callable[[str], Any], Callable[[dict], str]]] = {
    ".yaml": (_load_yaml, _dump_yaml),
    ".yml": (_load_yaml, _dump_yaml),
    ".json": (json.loads, _dump_json),
}
CONFIG_EXTENSIONS = tuple(_CODECS)


def slugify(name: str) -> str:
    """File-name form of a source name: lowercase, non-alphanumerics become ``-``."""

    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def read_mapping(path: Path) -> dict:
    loads, _ = _CODECS[path.suffix]
    data = loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def write_mapping(path: Path, payload: dict) -> None:
    _, dumps = _CODECS[path.suffix]
    path.write_text(dumps(payload), encoding="utf-8")


def resolve_home(default: Path | None = None) -> Path:
    env_root = os.environ.get(HOME_ENV)
    if env_root:
        return Path(env_root).expanduser().resolve()
    return (default or Path(__file__).resolve().parents[2]).resolve()


@dataclass(slots=True)
class ConfigLocator:
    """Directory layout of one book-digest home. ``$BOOK_DIGEST_HOME`` wins over ``project_root``."""

    project_root: Path | None = None
    data_dir: Path = field(init=False)
    sources_dir: Path = field(init=False)
    logs_dir: Path = field(init=False)

    def __post_init__(self) -> None:
        self.project_root = resolve_home(self.project_root)
        self.data_dir = self.project_root / "data"
        self.sources_dir = self.data_dir / "sources"
        self.logs_dir = self.project_root / "logs"
        for directory in (self.data_dir, self.sources_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


class ConfigRepository:
    """Validated access to the global config and the source definitions."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration
    # ------------------------------------------------------------------
    def load_global_config(self, reload: bool = False) -> GlobalConfig:
        """Return the global config, writing defaults on first use."""

        if self._global is not None and not reload:
            return self._global
        path = self.locator.global_config_path()
        if not path.exists():
            self.save_global_config(GlobalConfig())
            return self._global  # type: ignore[return-value]
        self._global = GlobalConfig.model_validate(read_mapping(path))
        return self._global

    def save_global_config(self, config: GlobalConfig) -> None:
        write_mapping(self.locator.global_config_path(), config.model_dump(mode="json"))
        self._global = config

    def store_path(self) -> Path:
        return self.load_global_config().resolved_store_path(self.locator.project_root)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------
    def source_path(self, source_name: str) -> Path:
        return self.locator.sources_dir / f"{slugify(source_name)}{SOURCE_CONFIG_SUFFIX}"

    def list_source_files(self) -> Iterator[Path]:
        for path in sorted(self.locator.sources_dir.iterdir()):
            if path.is_file() and path.suffix in _CODECS:
                yield path

    def list_sources(self, provider: CatalogProvider | None = None) -> list[SourceConfig]:
        """Every source definition, optionally for one provider.

        Two files declaring the same ``source_name`` are a configuration error.
        """

        sources: dict[str, SourceConfig] = {}
        for path in self.list_source_files():
            source = SourceConfig.model_validate(read_mapping(path))
            key = source.source_name.casefold()
            if key in sources:
                raise ValueError(f"Duplicate source name {source.source_name!r} in {path.name}")
            sources[key] = source
        return [
            source
            for source in sources.values()
            if provider is None or source.provider is provider
        ]

    def load_source(self, identifier: str | Path) -> SourceConfig:
        """Load a source by file path, by slug file name, or by its declared name."""

        if isinstance(identifier, Path):
            if not identifier.exists():
                raise FileNotFoundError(f"Source configuration not found: {identifier}")
            return SourceConfig.model_validate(read_mapping(identifier))
        path = self.source_path(identifier)
        if path.exists():
            return SourceConfig.model_validate(read_mapping(path))
        wanted = identifier.casefold()
        for source in self.list_sources():
            if source.source_name.casefold() == wanted:
                return source
        raise FileNotFoundError(f"Source configuration not found: {identifier}")

    def save_source(self, config: SourceConfig) -> Path:
        path = self.source_path(config.source_name)
        write_mapping(path, config.model_dump(mode="json"))
        return path

    def delete_source(self, source_name: str) -> bool:
        path = self.source_path(source_name)
        if not path.exists():
            return False
        path.unlink()
        return True


__all__ = [
    "CONFIG_EXTENSIONS",
    "ConfigLocator",
    "ConfigRepository",
    "HOME_ENV",
    "read_mapping",
    "resolve_home",
    "slugify",
    "write_mapping",
]
