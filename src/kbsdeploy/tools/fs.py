from typing import Literal, overload
from pathlib import Path


@overload
def find_config_file(filename: str, cwd: Path | None = None, required: Literal[False] = False) -> Path | None: ...


@overload
def find_config_file(filename: str, cwd: Path | None = None, required: Literal[True] = True) -> Path: ...


def find_config_file(filename: str, cwd: Path | None = None, required: bool = True) -> Path | None:
    """
    Find a file with the given *filename* in the given *cwd* or any of its parent directories.
    """

    if cwd is None:
        cwd = Path.cwd()

    for directory in [cwd] + list(cwd.parents):
        file = directory / filename
        if file.exists():
            return file

    if required:
        raise FileNotFoundError(f"Could not find '{filename}' in '{cwd}' or any of its parent directories.")

    return None


def replace_text(file: Path, content: str) -> None:
    """
    Replace the content of *file* by writing to a sibling temporary file first and renaming it into place.
    """

    tmp = file.with_name(file.name + ".tmp")
    tmp.write_text(content)
    tmp.replace(file)
