"""File-backed text document artifact."""

import glob
import hashlib
import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from consensus_loop.artifacts.base import MutationResult

logger = logging.getLogger(__name__)

_TMP_SUFFIX = ".tmp"


@dataclass(frozen=True)
class DocumentSnapshot:
    """Immutable view of a document at one point in time."""

    path: str
    content: str
    digest: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "content": self.content, "digest": self.digest}


class TextDocument:
    """A UTF-8 text file under review."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def read(self) -> str:
        return self.path.read_text(encoding="utf-8")

    def snapshot(self) -> DocumentSnapshot:
        content = self.read()
        return DocumentSnapshot(
            path=str(self.path),
            content=content,
            digest=hashlib.sha256(content.encode()).hexdigest(),
        )

    def __repr__(self) -> str:
        return f"TextDocument({str(self.path)!r})"


class DocumentMutator:
    """Applies ``{"find": ..., "replace": ...}`` fixes to a TextDocument.

    The ``find`` text must occur exactly once. The new content is written to a
    temporary file beside the document and moved into place, so a failure at
    any point leaves the original untouched. Temporary files orphaned by an
    interrupted earlier write are removed before the next one.
    """

    async def apply(self, artifact: TextDocument, fix: Any) -> MutationResult:
        if not isinstance(fix, Mapping) or not isinstance(fix.get("find"), str):
            return MutationResult.failed(f"Unsupported fix {fix!r}; expected find/replace mapping")

        find = fix["find"]
        replacement = fix.get("replace", "")
        if not find:
            return MutationResult.failed("Fix has an empty find string")
        if not isinstance(replacement, str):
            return MutationResult.failed("Fix replace value must be a string")

        try:
            content = artifact.read()
        except OSError as e:
            return MutationResult.failed(f"Cannot read {artifact.path}: {e}")

        occurrences = content.count(find)
        if occurrences != 1:
            return MutationResult.failed(
                f"Find text occurs {occurrences} times in {artifact.path}, expected exactly once"
            )

        _cleanup_orphaned_tmp(artifact.path)
        try:
            _atomic_write(artifact.path, content.replace(find, replacement, 1))
        except OSError as e:
            return MutationResult.failed(f"Cannot write {artifact.path}: {e}")

        logger.debug(f"Applied fix to {artifact.path}")
        return MutationResult.ok()


def _tmp_prefix(path: Path) -> str:
    return f".{path.name}."


def _cleanup_orphaned_tmp(path: Path) -> None:
    """Remove temporary files left beside ``path`` by an interrupted write."""
    for orphan in path.parent.glob(f"{glob.escape(_tmp_prefix(path))}*{_TMP_SUFFIX}"):
        try:
            orphan.unlink()
            logger.debug(f"Removed orphaned temporary file {orphan}")
        except OSError as e:
            logger.warning(f"Could not remove orphaned temporary file {orphan}: {e}")


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=_tmp_prefix(path), suffix=_TMP_SUFFIX)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
