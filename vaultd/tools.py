"""
Vault file tools for vaultd.

Each tool returns a human-readable string: plain text for listings and
file content, otherwise a JSON object with a "success" or "error" key.
Expected failures are reported in the result, never raised.
"""

import json
import logging
import re
from typing import Any, Optional

from .documents import FileSystemDocumentSource
from .errors import PathTraversalError

logger = logging.getLogger(__name__)

_LINE_SPLIT_RE = re.compile(r"\r?\n")


def _error(message: str) -> str:
    return json.dumps({"error": message})


def _success(message: Any) -> str:
    return json.dumps({"success": message})


def strip_markdown_extension(path: str) -> str:
    """Drop a trailing .md so the path can be used as a wikilink target."""
    return path[:-3] if path.lower().endswith(".md") else path


def build_wikilink(target: str, alias: Optional[str] = None) -> str:
    """Build [[target]] or [[target|alias]]."""
    alias = alias.strip() if alias else ""
    return f"[[{target}|{alias}]]" if alias else f"[[{target}]]"


def has_wikilink(content: str, target: str) -> bool:
    """Check for an existing link to target, by full path or basename, with or without alias."""
    basename = target.rstrip("/").rsplit("/", 1)[-1]
    pattern = re.compile(
        rf"\[\[(?:{re.escape(target)}|{re.escape(basename)})(?:\|[^\]]+)?\]\]"
    )
    return pattern.search(content) is not None


class VaultFileTools:
    """File operations on a vault, shaped for tool callers."""

    def __init__(self, source: FileSystemDocumentSource):
        self.source = source

    def _normalize(self, relative_path: str) -> str:
        return self.source.relative(self.source.resolve(relative_path.strip()))

    async def list_files(self, relative_path: str = ".") -> str:
        """List sub-folders (suffixed with "/") then files, one per line."""
        try:
            folders, files = await self.source.list_dir(relative_path or ".")
        except PathTraversalError as e:
            return _error(str(e))
        except OSError as e:
            logger.error(f"Error listing files in {relative_path}: {e}", exc_info=True)
            return _error(f"Failed to list files: {e}")
        return "\n".join([f"{folder}/" for folder in folders] + files)

    async def read_file(self, relative_path: str, line_number: bool = False) -> str:
        """
        Read a file.

        Args:
            relative_path: Vault-relative file path
            line_number: Prefix each line with "N: " (1-based)
        """
        if not relative_path:
            return _error("File path cannot be empty.")
        try:
            content = await self.source.read_text(relative_path)
        except PathTraversalError as e:
            return _error(str(e))
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading file {relative_path}: {e}", exc_info=True)
            return _error(f"Failed to read file: {e}")

        if not line_number:
            return content
        return "\n".join(
            f"{i}: {line}" for i, line in enumerate(_LINE_SPLIT_RE.split(content), start=1)
        )

    async def create_file(self, relative_path: str, content: str) -> str:
        """Create a new file; fails if anything already exists at the path."""
        if not relative_path:
            return _error("File path cannot be empty.")
        try:
            if await self.source.exists(relative_path):
                return _error("File already exists.")
            await self.source.write_text(relative_path, content, overwrite=False)
        except PathTraversalError as e:
            return _error(str(e))
        except FileExistsError:
            return _error("File already exists.")
        except OSError as e:
            logger.error(f"Error creating file {relative_path}: {e}", exc_info=True)
            return _error(f"Failed to create file: {e}")
        logger.info(f"Created file {relative_path}")
        return _success("File created successfully.")

    async def edit_file(
        self,
        relative_path: str,
        start_line: int,
        end_line: int,
        new_content: str,
    ) -> str:
        """
        Replace a 1-based inclusive line range with new content.

        Lines are re-joined with LF.
        """
        if start_line < 1 or end_line < 1:
            return _error("Line numbers must be 1 or greater.")
        if start_line > end_line:
            return _error(f"Start line ({start_line}) cannot be greater than end line ({end_line}).")

        try:
            if not await self.source.exists(relative_path):
                return _error(f"File not found: {relative_path}")
            if not await self.source.is_file(relative_path):
                return _error(f"Path is a folder, not a file: {relative_path}")

            lines = _LINE_SPLIT_RE.split(await self.source.read_text(relative_path))
            if start_line > len(lines):
                return _error(
                    f"Start line ({start_line}) is out of bounds for file with {len(lines)} lines."
                )
            if end_line > len(lines):
                return _error(
                    f"End line ({end_line}) is out of bounds for file with {len(lines)} lines."
                )

            updated = lines[:start_line - 1] + _LINE_SPLIT_RE.split(new_content) + lines[end_line:]
            await self.source.write_text(relative_path, "\n".join(updated))
        except PathTraversalError as e:
            return _error(str(e))
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error editing file {relative_path}: {e}", exc_info=True)
            return _error(f"Failed to edit file: {e}")

        logger.info(f"Edited lines {start_line}-{end_line} of {relative_path}")
        return json.dumps({
            "success": True,
            "message": f"Successfully edited lines {start_line}-{end_line} in {relative_path}.",
        })

    async def delete_file(self, relative_path: str) -> str:
        try:
            if not await self.source.is_file(relative_path):
                return _error(f"File not found in vault: {relative_path}")
            await self.source.delete_file(relative_path)
        except PathTraversalError as e:
            return _error(str(e))
        except OSError as e:
            logger.error(f"Error deleting file {relative_path}: {e}", exc_info=True)
            return _error(f"Failed to delete file: {relative_path}. {e}")
        logger.info(f"Deleted file {relative_path}")
        return _success(f"File deleted: {relative_path}")

    async def create_folder(self, relative_path: str) -> str:
        """Create a folder and any missing parents; existing folders are fine."""
        if not relative_path:
            return _error("Folder path cannot be empty.")
        try:
            await self.source.create_folder(relative_path)
        except PathTraversalError as e:
            return _error(str(e))
        except OSError as e:
            logger.error(f"Error creating folder {relative_path}: {e}", exc_info=True)
            return _error(f"Failed to create folder: {relative_path}. {e}")
        return _success("Folder created successfully.")

    async def delete_folder(self, relative_path: str, force: bool = False) -> str:
        """Delete a folder; a non-empty folder requires force."""
        try:
            if not relative_path or not await self.source.is_dir(relative_path):
                return _error("Folder does not exist.")
            folders, files = await self.source.list_dir(relative_path)
            if (folders or files) and not force:
                return _error("Folder is not empty. Use force to delete anyway.")
            await self.source.delete_folder(relative_path, recursive=force)
        except PathTraversalError as e:
            return _error(str(e))
        except OSError as e:
            logger.error(f"Error deleting folder {relative_path}: {e}", exc_info=True)
            return _error(f"Failed to delete folder: {relative_path}. {e}")
        logger.info(f"Deleted folder {relative_path}")
        return _success("Folder deleted successfully.")

    async def _append_link(self, path: str, target: str, alias: Optional[str] = None) -> tuple[bool, str]:
        """Append a wikilink to a note unless it already links to target."""
        link = build_wikilink(target, alias)
        content = await self.source.read_text(path)
        if has_wikilink(content, target):
            return False, link

        separator = "" if not content or content.endswith("\n") else "\n"
        await self.source.write_text(path, f"{content}{separator}{link}\n")
        return True, link

    async def create_link(
        self,
        source_path: str,
        target_path: str,
        alias: Optional[str] = None,
        bidirectional: bool = False,
        create_target_if_missing: bool = False,
    ) -> str:
        """
        Link one note to another with an Obsidian wikilink.

        Args:
            source_path: Note that receives the link
            target_path: Note being linked to
            alias: Optional display text for the link
            bidirectional: Also add a backlink to the target note
            create_target_if_missing: Create an empty target note if needed
        """
        if not source_path or not source_path.strip():
            return _error("source_path cannot be empty.")
        if not target_path or not target_path.strip():
            return _error("target_path cannot be empty.")

        try:
            source = self._normalize(source_path)
            target = self._normalize(target_path)

            if not await self.source.is_file(source):
                return _error(f"Source file not found: {source}")

            target_created = False
            if not await self.source.exists(target):
                if not create_target_if_missing:
                    return _error(f"Target file not found: {target}")
                await self.source.write_text(target, "", overwrite=False)
                target_created = True
            if not await self.source.is_file(target):
                return _error(f"Target file not found: {target}")

            source_updated, link = await self._append_link(
                source, strip_markdown_extension(target), alias
            )
            target_updated = False
            if bidirectional:
                target_updated, _ = await self._append_link(target, strip_markdown_extension(source))
        except PathTraversalError as e:
            return _error(str(e))
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error creating link {source_path} -> {target_path}: {e}", exc_info=True)
            return _error(f"Failed to create link: {e}")

        logger.info(f"Linked {source} -> {target} (bidirectional={bidirectional})")
        return json.dumps({
            "success": True,
            "source_path": source,
            "target_path": target,
            "link": link,
            "source_updated": source_updated,
            "target_updated": target_updated,
            "bidirectional": bidirectional,
            "target_created": target_created,
        })
