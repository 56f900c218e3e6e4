"""Injectable filesystem used for connection profiles and TLS material."""

import logging
import os
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

DEFAULT_ROOT = Path.home() / '.composer'


class LocalFileSystem:
    """
    Filesystem rooted at a directory on local disk.

    Relative paths resolve against ``root``; absolute paths are used as given,
    so TLS certificate paths passed on the command line work unchanged.
    """

    def __init__(self, root: Optional[PathLike] = None):
        self.root = Path(root) if root is not None else DEFAULT_ROOT

    def resolve(self, path: PathLike) -> Path:
        return self.root / Path(path)

    def read_text(self, path: PathLike, encoding: str = 'utf-8') -> str:
        return self.resolve(path).read_text(encoding=encoding)

    def write_text(self, path: PathLike, data: str, encoding: str = 'utf-8') -> None:
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(data, encoding=encoding)
        logger.debug(f"Wrote {len(data)} characters to {target}")

    def exists(self, path: PathLike) -> bool:
        return self.resolve(path).exists()

    def remove(self, path: PathLike) -> None:
        self.resolve(path).unlink()

    def __repr__(self) -> str:
        return f"LocalFileSystem(root={str(self.root)!r})"
