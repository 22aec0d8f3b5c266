"""Document store abstraction consumed by the sync engine."""

import posixpath
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..frontmatter import Document


class DocumentStore(ABC):
    """Key/value content store with a folder namespace.

    Paths are POSIX-style and relative to the store root. Every operation is
    a suspension point; the store gives last-write-wins semantics and no
    locking, so callers re-read before every automated modification.
    """

    @abstractmethod
    async def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    async def read(self, path: str) -> str:
        pass

    @abstractmethod
    async def create(self, path: str, text: str) -> None:
        """Create a new file. Raises FileExistsError if it is already there."""
        pass

    @abstractmethod
    async def modify(self, path: str, text: str) -> None:
        """Overwrite an existing file. Raises FileNotFoundError if missing."""
        pass

    @abstractmethod
    async def create_folder(self, path: str) -> None:
        pass

    @abstractmethod
    async def rename(self, path: str, new_path: str) -> None:
        pass

    @abstractmethod
    async def list_files(self) -> List[str]:
        """All markdown files in the store."""
        pass

    async def get_frontmatter(self, path: str) -> Dict[str, Any]:
        return (await self.read_document(path)).frontmatter

    async def read_document(self, path: str) -> Document:
        return Document.parse(await self.read(path))

    async def write_document(self, path: str, document: Document) -> None:
        await self.modify(path, document.render())

    async def ensure_folder(self, path: str) -> None:
        if not await self.exists(path):
            await self.create_folder(path)

    async def save(self, path: str, text: str) -> None:
        """Create or overwrite."""
        if await self.exists(path):
            await self.modify(path, text)
        else:
            await self.create(path, text)

    async def available_path(self, path: str) -> str:
        """``path``, or ``name (n).md`` if it is taken."""
        if not await self.exists(path):
            return path
        stem = path[:-3] if path.endswith(".md") else path
        n = 2
        while await self.exists(f"{stem} ({n}).md"):
            n += 1
        return f"{stem} ({n}).md"

    async def list_folder(self, folder: str) -> List[str]:
        prefix = folder.rstrip("/") + "/"
        return [p for p in await self.list_files() if p.startswith(prefix)]


def basename(path: str) -> str:
    """File name without folder and ``.md`` extension."""
    name = posixpath.basename(path)
    return name[:-3] if name.endswith(".md") else name


def dirname(path: str) -> str:
    return posixpath.dirname(path)


def join(*parts: str) -> str:
    return posixpath.join(*[p for p in parts if p])
