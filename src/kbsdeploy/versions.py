"""
Resolves which KBS sources and container image to deploy from the `versions.yaml` manifest.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from kbsdeploy.tools.fs import find_config_file


class DependencyError(Exception):
    """
    Raised when a value cannot be read from the versions manifest.
    """


@dataclass
class VersionsManifest:
    """
    Read-only view of a YAML versions manifest, addressed by dotted key paths such as `externals.coco-kbs.url`.

    Scalars are always read as strings, so that versions like `0.10` are not turned into numbers.
    """

    FILENAME = "versions.yaml"

    path: Path
    _cache: dict[str, Any] | None = field(init=False, repr=False, default=None)

    @staticmethod
    def find(cwd: Path | None = None) -> "VersionsManifest":
        """
        Find the `versions.yaml` in the given *cwd* or any of its parent directories.
        """

        try:
            return VersionsManifest(find_config_file(VersionsManifest.FILENAME, cwd))
        except FileNotFoundError as exc:
            raise DependencyError(str(exc)) from exc

    def _load(self) -> dict[str, Any]:
        if self._cache is None:
            logger.debug("Loading versions manifest from '{}'", self.path)
            try:
                data = yaml.load(self.path.read_text(), Loader=yaml.BaseLoader)
            except FileNotFoundError as exc:
                raise DependencyError(f"Versions manifest '{self.path}' does not exist") from exc
            except yaml.YAMLError as exc:
                raise DependencyError(f"Versions manifest '{self.path}' is not valid YAML: {exc}") from exc
            if not isinstance(data, dict):
                raise DependencyError(f"Versions manifest '{self.path}' must contain a mapping")
            self._cache = data
        return self._cache

    def get(self, key: str) -> str:
        """
        Retrieve a scalar value by its dotted key path.

        Raises:
            DependencyError: If the manifest cannot be read, the key is absent or does not point to a scalar.
        """

        value: Any = self._load()
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                raise DependencyError(f"Key '{key}' not found in '{self.path}'")
            value = value[part]
        if not isinstance(value, str):
            raise DependencyError(f"Key '{key}' in '{self.path}' is not a scalar value")
        return value


@dataclass(frozen=True)
class ServiceDescriptor:
    """
    Where to get the KBS sources from and which container image to deploy.
    """

    repository_url: str
    git_ref: str
    image_name: str
    image_tag: str

    @property
    def image_ref(self) -> str:
        return f"{self.image_name}:{self.image_tag}"

    @staticmethod
    def resolve(manifest: VersionsManifest, component: str = "coco-kbs") -> "ServiceDescriptor":
        prefix = f"externals.{component}"
        return ServiceDescriptor(
            repository_url=manifest.get(f"{prefix}.url"),
            git_ref=manifest.get(f"{prefix}.version"),
            image_name=manifest.get(f"{prefix}.image"),
            image_tag=manifest.get(f"{prefix}.image_tag"),
        )
