# universe_terminal/sandbox.py

import os
import logging
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


class SandboxedFileSystem:
    """Confines file operations to a base directory.

    Paths that would resolve outside the base directory are refused: `resolve`
    returns None, `create`/`delete` return False and `list` returns an empty
    list. The base directory is never substituted for an escaping path.
    """

    def __init__(self, base_dir: PathLike):
        self.base_dir = Path(os.path.realpath(os.path.expanduser(os.fspath(base_dir))))
        logger.info(f"SandboxedFileSystem rooted at {self.base_dir}")

    def ensure_base(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def is_within(self, path: PathLike) -> bool:
        candidate = os.path.realpath(os.fspath(path))
        base = os.fspath(self.base_dir)
        try:
            return os.path.commonpath([candidate, base]) == base
        except ValueError:
            # Different drives on Windows.
            return False

    def resolve(self, path: PathLike) -> Optional[Path]:
        """Canonical location of `path` inside the sandbox, or None if it escapes.

        Relative paths are taken relative to the base directory; absolute
        paths must already point inside it.
        """
        raw = os.fspath(path)
        joined = raw if os.path.isabs(raw) else os.path.join(self.base_dir, raw)
        canonical = Path(os.path.realpath(joined))
        if not self.is_within(canonical):
            logger.warning(f"Refused path outside sandbox: '{raw}' (resolved to '{canonical}')")
            return None
        return canonical

    def create(self, path: PathLike) -> bool:
        target = self.resolve(path)
        if target is None or target.exists():
            return False
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.touch(exist_ok=False)
            logger.debug(f"Created sandbox file {target}")
            return True
        except OSError as e:
            logger.error(f"Could not create sandbox file {target}: {e}")
            return False

    def delete(self, path: PathLike) -> bool:
        target = self.resolve(path)
        if target is None or target == self.base_dir or not target.exists():
            return False
        try:
            if target.is_dir():
                target.rmdir()
            else:
                target.unlink()
            logger.debug(f"Deleted sandbox entry {target}")
            return True
        except OSError as e:
            logger.error(f"Could not delete sandbox entry {target}: {e}")
            return False

    def list(self, path: PathLike = ".") -> List[Path]:
        directory = self.resolve(path)
        if directory is None or not directory.is_dir():
            return []
        try:
            # Symlinks pointing out of the sandbox are not reported.
            return sorted(entry for entry in directory.iterdir() if self.is_within(entry))
        except OSError as e:
            logger.error(f"Could not list sandbox directory {directory}: {e}")
            return []
