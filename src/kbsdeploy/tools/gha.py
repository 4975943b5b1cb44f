from collections.abc import Iterator
from contextlib import contextmanager
import sys


@contextmanager
def group(title: str) -> Iterator[None]:
    """
    Fold the output produced inside the context into a collapsible group in the GitHub Actions log.
    """

    print(f"::group::{title}", file=sys.stdout, flush=True)
    try:
        yield
    finally:
        print("::endgroup::", file=sys.stdout, flush=True)
