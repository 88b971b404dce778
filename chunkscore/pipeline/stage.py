"""File-per-chunk staging store.

Artifacts live in one dedicated directory, one parquet file per
``(role, index, total)``:

    tmp/ingress_3_1.parquet
    tmp/egress_3_1.parquet

Names are derived from the descriptor alone, so no two workers ever address
the same file and reruns with the same ``total_chunks`` overwrite in place.
Writes go to a hidden temporary file that is renamed over the target, so a
reader only ever sees a complete artifact. Parquet keeps column dtypes, so
text such as ``"007"`` or ``"NA"`` and the dtypes of empty chunks survive
the round trip unchanged.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional

import pandas as pd
import pyarrow as pa

from chunkscore.pipeline.types import (
    ChunkDescriptor,
    Role,
    StorageReadError,
    StorageWriteError,
)

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".parquet"
_ARTIFACT_RE = re.compile(r"^(ingress|egress)_(\d+)_(\d+)\.parquet$")
_TMP_SUFFIX = ".tmp"


class StageStore:
    """Durable intermediate storage between source, workers and sink."""

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root)

    def path_for(self, role: Role | str, descriptor: ChunkDescriptor) -> Path:
        role = Role(role)
        return self.root / f"{role.value}_{descriptor.total}_{descriptor.index}{ARTIFACT_SUFFIX}"

    def exists(self, role: Role | str, descriptor: ChunkDescriptor) -> bool:
        return self.path_for(role, descriptor).is_file()

    def write(self, role: Role | str, descriptor: ChunkDescriptor, records: pd.DataFrame) -> Path:
        """Atomically persist ``records`` for ``(role, descriptor)``.

        Raises:
            StorageWriteError: on any I/O or encoding failure. The target is
                left untouched.
        """
        target = self.path_for(role, descriptor)
        tmp_path: Optional[str] = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=_TMP_SUFFIX, dir=self.root
            )
            with os.fdopen(fd, "wb") as handle:
                records.to_parquet(handle, engine="pyarrow", index=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
            tmp_path = None
        except (OSError, ValueError, pa.ArrowException) as e:
            raise StorageWriteError(
                f"Failed to write {target.name}: {e}", index=descriptor.index
            ) from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
        logger.debug(f"Staged {target.name} ({len(records)} rows)")
        return target

    def read(self, role: Role | str, descriptor: ChunkDescriptor) -> pd.DataFrame:
        """Load the artifact for ``(role, descriptor)``.

        Raises:
            StorageReadError: if the artifact is absent, truncated or not
                parquet.
        """
        path = self.path_for(role, descriptor)
        if not path.is_file():
            raise StorageReadError(f"Artifact {path.name} does not exist", index=descriptor.index)
        try:
            return pd.read_parquet(path, engine="pyarrow")
        except (OSError, ValueError, pa.ArrowException) as e:
            raise StorageReadError(
                f"Artifact {path.name} is unreadable: {e}", index=descriptor.index
            ) from e

    def artifacts(self, role: Role | str | None = None) -> List[Path]:
        """Complete artifacts currently staged, optionally for one role."""
        if not self.root.is_dir():
            return []
        wanted = Role(role).value if role is not None else None
        found = []
        for path in sorted(self.root.iterdir()):
            match = _ARTIFACT_RE.match(path.name)
            if match and (wanted is None or match.group(1) == wanted):
                found.append(path)
        return found

    def clear(self) -> int:
        """Remove staged artifacts and leftover temporary files.

        Only files this store names are touched; the directory itself is
        removed when nothing else is left in it. Returns the number of files
        deleted. Never invoked by the pipeline itself.
        """
        if not self.root.is_dir():
            return 0
        removed = 0
        for path in self.root.iterdir():
            is_tmp = path.name.startswith(".") and path.name.endswith(_TMP_SUFFIX)
            if path.is_file() and (_ARTIFACT_RE.match(path.name) or is_tmp):
                path.unlink()
                removed += 1
        if not any(self.root.iterdir()):
            self.root.rmdir()
        logger.info(f"Cleared {removed} staged files from {self.root}")
        return removed


__all__ = ["StageStore"]
