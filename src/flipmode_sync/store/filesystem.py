"""Document store backed by a vault directory on local disk."""

import logging
from pathlib import Path
from typing import List

from ..errors import ConsistencyError
from .base import DocumentStore

logger = logging.getLogger(__name__)


class FileSystemStore(DocumentStore):
    """Markdown vault on the local filesystem."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._resolved_root = self.root.resolve()

    def _path(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if full != self._resolved_root and self._resolved_root not in full.parents:
            raise ConsistencyError(f"Path escapes the vault: {path}")
        return full

    async def exists(self, path: str) -> bool:
        return self._path(path).exists()

    async def read(self, path: str) -> str:
        try:
            return self._path(path).read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ConsistencyError(f"Not a UTF-8 text file: {path}", detail=str(e))

    async def create(self, path: str, text: str) -> None:
        full = self._path(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        with open(full, "x", encoding="utf-8") as f:
            f.write(text)
        logger.debug(f"Created {path}")

    async def modify(self, path: str, text: str) -> None:
        full = self._path(path)
        if not full.is_file():
            raise FileNotFoundError(path)
        full.write_text(text, encoding="utf-8")
        logger.debug(f"Modified {path}")

    async def create_folder(self, path: str) -> None:
        self._path(path).mkdir(parents=True, exist_ok=True)

    async def rename(self, path: str, new_path: str) -> None:
        source = self._path(path)
        target = self._path(new_path)
        if target.exists():
            raise FileExistsError(new_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        source.rename(target)
        logger.debug(f"Renamed {path} -> {new_path}")

    async def list_files(self) -> List[str]:
        return sorted(p.relative_to(self.root).as_posix() for p in self.root.rglob("*.md"))
