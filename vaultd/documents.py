"""
Document source for vaultd.

Enumerates and reads the notes of a vault on the local file system, parses
YAML front-matter, and performs the file manipulation behind the file tools.
"""

import asyncio
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any, Protocol

import yaml

from .errors import PathTraversalError
from .models import DocumentRef

logger = logging.getLogger(__name__)

# A leading block delimited by lines containing only "---"
FRONT_MATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(?P<yaml>.*?)^---[ \t]*\r?$\n?",
    re.DOTALL | re.MULTILINE,
)


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """
    Extract YAML front-matter and body from a note.

    Args:
        text: Full note text

    Returns:
        (front_matter, body). front_matter is {} when the block is absent,
        is not valid YAML, or is not a mapping. The block is removed from
        body whenever it is delimited correctly.
    """
    match = FRONT_MATTER_RE.match(text)
    if not match:
        return {}, text

    body = text[match.end():]
    try:
        data = yaml.safe_load(match.group("yaml"))
    except yaml.YAMLError as e:
        logger.debug(f"Invalid front-matter: {e}")
        return {}, body

    if not isinstance(data, dict):
        return {}, body
    return data, body


def strip_front_matter(text: str) -> str:
    """Return the note body without its front-matter block."""
    return split_front_matter(text)[1]


class DocumentSource(Protocol):
    """What the indexing pipeline needs from a document collection."""

    async def list_documents(self) -> list[DocumentRef]:
        ...

    async def read_text(self, path: str) -> str:
        ...

    async def get_metadata(self, path: str) -> dict[str, Any]:
        ...


class FileSystemDocumentSource:
    """
    Document source backed by a vault directory.

    All paths are vault-relative POSIX strings; anything resolving outside
    the vault root raises PathTraversalError. Blocking file-system calls run
    on worker threads.
    """

    def __init__(self, root: Path):
        """
        Initialize the source.

        Args:
            root: Vault root directory
        """
        self.root = Path(root).resolve()

    def resolve(self, relative_path: str) -> Path:
        """
        Resolve a vault-relative path to an absolute path inside the vault.

        Raises:
            PathTraversalError: If the path escapes the vault root
        """
        candidate = (self.root / (relative_path or ".")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise PathTraversalError(relative_path)
        return candidate

    def relative(self, path: Path) -> str:
        """Vault-relative POSIX form of an absolute path."""
        rel = path.relative_to(self.root).as_posix()
        return "" if rel == "." else rel

    async def list_documents(self) -> list[DocumentRef]:
        """
        Enumerate every file in the vault.

        Returns:
            DocumentRefs sorted by path

        Raises:
            FileNotFoundError: If the vault root does not exist
        """
        return await asyncio.to_thread(self._walk)

    def _walk(self) -> list[DocumentRef]:
        if not self.root.is_dir():
            raise FileNotFoundError(f"Vault root does not exist: {self.root}")

        refs = []
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for name in filenames:
                full = Path(dirpath) / name
                refs.append(
                    DocumentRef(path=self.relative(full), extension=full.suffix[1:].lower())
                )
        refs.sort(key=lambda ref: ref.path)
        logger.debug(f"Enumerated {len(refs)} files under {self.root}")
        return refs

    async def read_text(self, path: str) -> str:
        target = self.resolve(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def get_metadata(self, path: str) -> dict[str, Any]:
        """Parsed front-matter of a note, or {} if it has none."""
        text = await self.read_text(path)
        return split_front_matter(text)[0]

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).exists)

    async def is_file(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).is_file)

    async def is_dir(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).is_dir)

    async def list_dir(self, path: str = ".") -> tuple[list[str], list[str]]:
        """
        List the direct children of a folder.

        Returns:
            (folders, files) as sorted vault-relative paths

        Raises:
            NotADirectoryError: If path is not a folder
        """
        target = self.resolve(path)

        def _list() -> tuple[list[str], list[str]]:
            if not target.is_dir():
                raise NotADirectoryError(f"Not a folder: {path}")
            folders, files = [], []
            for child in sorted(target.iterdir()):
                (folders if child.is_dir() else files).append(self.relative(child))
            return folders, files

        return await asyncio.to_thread(_list)

    async def write_text(self, path: str, content: str, overwrite: bool = True) -> None:
        """
        Write a file, creating parent folders as needed.

        Raises:
            FileExistsError: If overwrite is False and the file exists
        """
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w" if overwrite else "x", encoding="utf-8") as f:
                f.write(content)

        await asyncio.to_thread(_write)

    async def delete_file(self, path: str) -> None:
        target = self.resolve(path)
        if target.is_dir():
            raise IsADirectoryError(f"Path is a folder, not a file: {path}")
        await asyncio.to_thread(target.unlink)

    async def create_folder(self, path: str) -> None:
        target = self.resolve(path)
        await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        """
        Delete a folder.

        Raises:
            NotADirectoryError: If path is not a folder
            OSError: If the folder is not empty and recursive is False
        """
        target = self.resolve(path)
        if target == self.root:
            raise PermissionError("Refusing to delete the vault root")
        if not target.is_dir():
            raise NotADirectoryError(f"Folder does not exist: {path}")
        if recursive:
            await asyncio.to_thread(shutil.rmtree, target)
        else:
            await asyncio.to_thread(target.rmdir)

    def __repr__(self) -> str:
        """String representation."""
        return f"FileSystemDocumentSource(root={self.root})"
