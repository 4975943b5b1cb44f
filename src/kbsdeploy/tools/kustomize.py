from dataclasses import dataclass
from pathlib import Path
import shlex
import subprocess

from loguru import logger


@dataclass
class KustomizeError(Exception):
    statuscode: int
    stderr: str | None = None

    def __str__(self) -> str:
        message = f"Kustomize command failed with status code {self.statuscode}"
        if self.stderr:
            message += f": {self.stderr}"
        return message


class Kustomize:
    """
    Wrapper for editing kustomization files with `kustomize edit`.
    """

    def _edit(self, directory: Path, *args: str) -> None:
        command = ["kustomize", "edit", *args]
        logger.debug("$ {command} (in {cwd})", command=" ".join(map(shlex.quote, command)), cwd=directory)
        status = subprocess.run(command, cwd=directory, text=True, capture_output=True)
        if status.returncode:
            raise KustomizeError(status.returncode, status.stderr)

    def set_image(self, directory: Path, name: str, new_ref: str) -> None:
        """
        Replace the image called *name* in the kustomization with *new_ref*. The reference is passed as-is.
        """

        self._edit(directory, "set", "image", f"{name}={new_ref}")

    def add_resource(self, directory: Path, resource: str) -> None:
        """
        Add a resource file to the kustomization.
        """

        self._edit(directory, "add", "resource", resource)
