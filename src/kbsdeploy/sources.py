from dataclasses import dataclass
from pathlib import Path
import shlex
import shutil
import subprocess
from uuid import uuid4

from filelock import FileLock
from loguru import logger


@dataclass
class SourceFetchError(Exception):
    command: str
    statuscode: int
    stderr: str | None = None

    def __str__(self) -> str:
        message = f"Git command `{self.command}` failed with status code {self.statuscode}"
        if self.stderr:
            message += f": {self.stderr}"
        return message


@dataclass
class SourceFetcher:
    """
    Clones the KBS sources at a given ref into a fixed directory, replacing any previous checkout.
    """

    checkout_dir: Path
    lock_timeout: float = 60
    """ Seconds to wait for another process on this host that is re-cloning the same directory. """

    @property
    def lockfile(self) -> Path:
        return self.checkout_dir.with_name(f".{self.checkout_dir.name}.lock")

    def _git(self, *args: str, cwd: Path | None = None) -> None:
        command = ["git", *args]
        logger.debug("$ {}", " ".join(map(shlex.quote, command)))
        status = subprocess.run(command, cwd=cwd, text=True, capture_output=True)
        if status.returncode:
            raise SourceFetchError(" ".join(command), status.returncode, status.stderr)

    def fetch(self, repository_url: str, git_ref: str) -> Path:
        """
        Shallow clone *repository_url* and check out *git_ref* on a new local branch.

        Returns:
            The checkout directory.
        Raises:
            SourceFetchError: If any of the Git commands fail.
        """

        with FileLock(self.lockfile, timeout=self.lock_timeout):
            if self.checkout_dir.exists():
                logger.info("Removing previous checkout at '{}'", self.checkout_dir)
                shutil.rmtree(self.checkout_dir)

            logger.info("Cloning {} ({}) to '{}'", repository_url, git_ref, self.checkout_dir)
            self._git("clone", "--depth", "1", repository_url, str(self.checkout_dir))
            self._git("fetch", "--depth=1", "origin", git_ref, cwd=self.checkout_dir)
            self._git("checkout", "FETCH_HEAD", "-b", new_branch_name(), cwd=self.checkout_dir)

        return self.checkout_dir


def new_branch_name() -> str:
    """
    Generate a local branch name that does not collide with branches from previous runs.
    """

    return f"kbs-{uuid4().hex[:12]}"
