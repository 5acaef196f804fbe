from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Union


logger = logging.getLogger(__name__)

# Files holding secrets (store, generated .env): owner read/write only
PERM_SECURE = 0o600
# Non-secret configuration (project configs, registry)
PERM_CONFIG = 0o644
# The data directory itself
PERM_DIR = 0o700

TEMP_PREFIX = ".tmp-"


class AtomicWriteError(OSError):
    """Raised when an atomic write fails; the target file is left untouched."""


def atomic_write(path: Union[str, os.PathLike[str]], data: bytes, *, mode: int = PERM_CONFIG) -> None:
    """Replace `path` with `data` so readers only ever see the old or new file.

    Steps
    - create a temp file in the target's directory (same filesystem, so the
      final rename is atomic),
    - write, flush and fsync the payload,
    - chmod to `mode`,
    - `os.replace` over the target.

    Any failure before the replace removes the temp file and raises
    `AtomicWriteError` chained to the underlying OS error.
    """
    target = Path(path)
    directory = target.parent if str(target.parent) else Path(".")

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=str(directory))
    except OSError as ex:
        raise AtomicWriteError(f"create temp file in {directory}: {ex}") from ex

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, target)
    except BaseException as ex:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        if isinstance(ex, OSError):
            raise AtomicWriteError(f"write {target}: {ex}") from ex
        raise

    logger.debug("wrote %s (%d bytes, mode %o)", target, len(data), mode)


__all__ = [
    "AtomicWriteError",
    "PERM_CONFIG",
    "PERM_DIR",
    "PERM_SECURE",
    "atomic_write",
]
