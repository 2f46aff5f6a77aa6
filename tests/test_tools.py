"""
Tests for the vault file tools.
"""

import json

import pytest

from vaultd.documents import FileSystemDocumentSource
from vaultd.tools import VaultFileTools, build_wikilink, has_wikilink, strip_markdown_extension


TRAVERSAL_ERROR = {"error": "Invalid path: ../outside.md. Path traversal is not allowed."}


@pytest.fixture
def tools(vault):
    return VaultFileTools(FileSystemDocumentSource(vault))


def test_strip_markdown_extension():
    assert strip_markdown_extension("notes/idea.md") == "notes/idea"
    assert strip_markdown_extension("notes/IDEA.MD") == "notes/IDEA"
    assert strip_markdown_extension("image.png") == "image.png"


def test_build_wikilink():
    assert build_wikilink("notes/idea") == "[[notes/idea]]"
    assert build_wikilink("notes/idea", "Idea") == "[[notes/idea|Idea]]"
    assert build_wikilink("notes/idea", "  ") == "[[notes/idea]]"


def test_has_wikilink():
    assert has_wikilink("see [[notes/idea]]", "notes/idea")
    assert has_wikilink("see [[idea|the idea]]", "notes/idea")
    assert not has_wikilink("see [[notes/ideas]]", "notes/idea")
    assert not has_wikilink("see notes/idea", "notes/idea")


class TestListAndRead:
    """Tests for list_files and read_file."""

    @pytest.mark.asyncio
    async def test_list_root(self, tools):
        output = await tools.list_files(".")
        lines = output.splitlines()

        assert lines == [".obsidian/", ".vaultd/", "sub/", "a.md", "b.md", "image.png", "todo.txt"]

    @pytest.mark.asyncio
    async def test_list_subfolder(self, tools):
        assert await tools.list_files("sub") == "sub/c.md"

    @pytest.mark.asyncio
    async def test_list_missing_folder(self, tools):
        result = json.loads(await tools.list_files("nowhere"))
        assert result["error"].startswith("Failed to list files")

    @pytest.mark.asyncio
    async def test_list_traversal(self, tools):
        assert json.loads(await tools.list_files("../outside.md")) == TRAVERSAL_ERROR

    @pytest.mark.asyncio
    async def test_read_file(self, tools):
        assert await tools.read_file("b.md") == "note b para 1 text\n\nnote b para 2 text"

    @pytest.mark.asyncio
    async def test_read_file_with_line_numbers(self, tools):
        output = await tools.read_file("b.md", line_number=True)
        assert output == "1: note b para 1 text\n2: \n3: note b para 2 text"

    @pytest.mark.asyncio
    async def test_read_missing_file(self, tools):
        result = json.loads(await tools.read_file("missing.md"))
        assert result["error"].startswith("Failed to read file")

    @pytest.mark.asyncio
    async def test_read_traversal(self, tools):
        assert json.loads(await tools.read_file("../outside.md")) == TRAVERSAL_ERROR


class TestCreateAndEdit:
    """Tests for create_file and edit_file."""

    @pytest.mark.asyncio
    async def test_create_file(self, tools, vault):
        result = json.loads(await tools.create_file("new/idea.md", "# Idea\n"))

        assert result == {"success": "File created successfully."}
        assert (vault / "new" / "idea.md").read_text() == "# Idea\n"

    @pytest.mark.asyncio
    async def test_create_existing_file(self, tools, vault):
        result = json.loads(await tools.create_file("a.md", "overwritten"))

        assert result == {"error": "File already exists."}
        assert "note a para 1" in (vault / "a.md").read_text()

    @pytest.mark.asyncio
    async def test_create_traversal(self, tools, temp_dir):
        assert json.loads(await tools.create_file("../outside.md", "x")) == TRAVERSAL_ERROR
        assert not (temp_dir.parent / "outside.md").exists()

    @pytest.mark.asyncio
    async def test_edit_replaces_range(self, tools, vault):
        (vault / "edit.md").write_text("one\ntwo\nthree\nfour")

        result = json.loads(await tools.edit_file("edit.md", 2, 3, "TWO\nTHREE\nEXTRA"))

        assert result == {"success": True, "message": "Successfully edited lines 2-3 in edit.md."}
        assert (vault / "edit.md").read_text() == "one\nTWO\nTHREE\nEXTRA\nfour"

    @pytest.mark.asyncio
    async def test_edit_normalizes_line_endings(self, tools, vault):
        (vault / "crlf.md").write_bytes(b"one\r\ntwo\r\nthree")

        await tools.edit_file("crlf.md", 1, 1, "ONE")

        assert (vault / "crlf.md").read_bytes() == b"ONE\ntwo\nthree"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "start,end,message",
        [
            (0, 1, "Line numbers must be 1 or greater."),
            (3, 2, "Start line (3) cannot be greater than end line (2)."),
            (5, 5, "Start line (5) is out of bounds for file with 3 lines."),
            (2, 9, "End line (9) is out of bounds for file with 3 lines."),
        ],
    )
    async def test_edit_invalid_range(self, tools, vault, start, end, message):
        (vault / "edit.md").write_text("one\ntwo\nthree")

        assert json.loads(await tools.edit_file("edit.md", start, end, "x")) == {"error": message}
        assert (vault / "edit.md").read_text() == "one\ntwo\nthree"

    @pytest.mark.asyncio
    async def test_edit_missing_file(self, tools):
        result = json.loads(await tools.edit_file("missing.md", 1, 1, "x"))
        assert result == {"error": "File not found: missing.md"}

    @pytest.mark.asyncio
    async def test_edit_folder(self, tools):
        result = json.loads(await tools.edit_file("sub", 1, 1, "x"))
        assert result == {"error": "Path is a folder, not a file: sub"}


class TestDelete:
    """Tests for file and folder deletion."""

    @pytest.mark.asyncio
    async def test_delete_file(self, tools, vault):
        assert json.loads(await tools.delete_file("b.md")) == {"success": "File deleted: b.md"}
        assert not (vault / "b.md").exists()

    @pytest.mark.asyncio
    async def test_delete_missing_file(self, tools):
        result = json.loads(await tools.delete_file("ghost.md"))
        assert result == {"error": "File not found in vault: ghost.md"}

    @pytest.mark.asyncio
    async def test_delete_traversal(self, tools):
        assert json.loads(await tools.delete_file("../outside.md")) == TRAVERSAL_ERROR

    @pytest.mark.asyncio
    async def test_create_folder(self, tools, vault):
        result = json.loads(await tools.create_folder("projects/2024"))

        assert result == {"success": "Folder created successfully."}
        assert (vault / "projects" / "2024").is_dir()
        # Creating it again is fine
        assert json.loads(await tools.create_folder("projects/2024")) == result

    @pytest.mark.asyncio
    async def test_delete_empty_folder(self, tools, vault):
        (vault / "empty").mkdir()

        result = json.loads(await tools.delete_folder("empty"))

        assert result == {"success": "Folder deleted successfully."}
        assert not (vault / "empty").exists()

    @pytest.mark.asyncio
    async def test_delete_non_empty_folder_requires_force(self, tools, vault):
        result = json.loads(await tools.delete_folder("sub"))
        assert result == {"error": "Folder is not empty. Use force to delete anyway."}
        assert (vault / "sub" / "c.md").exists()

        result = json.loads(await tools.delete_folder("sub", force=True))
        assert result == {"success": "Folder deleted successfully."}
        assert not (vault / "sub").exists()

    @pytest.mark.asyncio
    async def test_delete_missing_folder(self, tools):
        assert json.loads(await tools.delete_folder("nowhere")) == {"error": "Folder does not exist."}

    @pytest.mark.asyncio
    async def test_delete_vault_root_refused(self, tools, vault):
        result = json.loads(await tools.delete_folder(".", force=True))

        assert "error" in result
        assert (vault / "a.md").exists()


class TestCreateLink:
    """Tests for create_link."""

    @pytest.mark.asyncio
    async def test_one_way_link(self, tools, vault):
        result = json.loads(await tools.create_link("a.md", "sub/c.md"))

        assert result == {
            "success": True,
            "source_path": "a.md",
            "target_path": "sub/c.md",
            "link": "[[sub/c]]",
            "source_updated": True,
            "target_updated": False,
            "bidirectional": False,
            "target_created": False,
        }
        assert (vault / "a.md").read_text().endswith("note a para 3 text\n[[sub/c]]\n")
        assert "[[" not in (vault / "sub" / "c.md").read_text()

    @pytest.mark.asyncio
    async def test_bidirectional_link_with_alias(self, tools, vault):
        result = json.loads(
            await tools.create_link("a.md", "b.md", alias="Note B", bidirectional=True)
        )

        assert result["link"] == "[[b|Note B]]"
        assert result["source_updated"] is True
        assert result["target_updated"] is True
        assert (vault / "b.md").read_text().endswith("[[a]]\n")

    @pytest.mark.asyncio
    async def test_existing_link_not_duplicated(self, tools, vault):
        (vault / "linked.md").write_text("already links to [[b]]\n")

        result = json.loads(await tools.create_link("linked.md", "b.md"))

        assert result["source_updated"] is False
        assert (vault / "linked.md").read_text() == "already links to [[b]]\n"

    @pytest.mark.asyncio
    async def test_missing_target(self, tools):
        result = json.loads(await tools.create_link("a.md", "ghost.md"))
        assert result == {"error": "Target file not found: ghost.md"}

    @pytest.mark.asyncio
    async def test_create_missing_target(self, tools, vault):
        result = json.loads(
            await tools.create_link("a.md", "new/target.md", create_target_if_missing=True)
        )

        assert result["target_created"] is True
        assert (vault / "new" / "target.md").exists()

    @pytest.mark.asyncio
    async def test_missing_source(self, tools):
        result = json.loads(await tools.create_link("ghost.md", "a.md"))
        assert result == {"error": "Source file not found: ghost.md"}

    @pytest.mark.asyncio
    async def test_empty_paths(self, tools):
        assert json.loads(await tools.create_link(" ", "a.md")) == {"error": "source_path cannot be empty."}
        assert json.loads(await tools.create_link("a.md", "")) == {"error": "target_path cannot be empty."}

    @pytest.mark.asyncio
    async def test_link_traversal(self, tools):
        result = json.loads(await tools.create_link("a.md", "../outside.md"))
        assert result == TRAVERSAL_ERROR
