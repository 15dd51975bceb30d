"""File collaborator: converts between txt/md files and node text.

Import turns file bytes into the text of a prompt node. Export turns a
node's output (txt) or conversation (md) back into bytes.
"""

import logging
from pathlib import Path

from mosaik.errors import UnsupportedFileTypeError
from mosaik.graph.node import Node

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("txt", "md")


def file_type_of(filename: str | Path) -> str:
    """Return ``txt`` or ``md`` for a supported file name."""
    suffix = Path(filename).suffix.lower().lstrip(".")
    if suffix not in SUPPORTED_TYPES:
        raise UnsupportedFileTypeError(f"Unsupported file type '{suffix or filename}' (expected txt or md)")
    return suffix


def import_text(data: bytes, filename: str | Path) -> str:
    """Decode imported file content into node text."""
    file_type_of(filename)
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise UnsupportedFileTypeError(f"{filename} is not valid UTF-8 text") from e


def export_text(node: Node, file_type: str = "txt") -> bytes:
    """
    Serialize a node for export.

    ``txt`` writes the node's output (or its last assistant turn); ``md``
    writes the conversation as one section per turn, falling back to the
    output when there is no conversation.
    """
    if file_type not in SUPPORTED_TYPES:
        raise UnsupportedFileTypeError(f"Unsupported export type '{file_type}'")

    if file_type == "md" and node.conversation:
        sections = []
        for message in node.conversation:
            heading = "User" if message.role == "user" else "Assistant"
            sections.append(f"## {heading}\n\n{message.content.strip()}\n")
        return "\n".join(sections).encode("utf-8")

    text = node.materialized_output()
    if not text:
        last = node.last_assistant_turn()
        text = last.content if last else ""
    return text.encode("utf-8")


def read_file(path: str | Path) -> str:
    path = Path(path)
    text = import_text(path.read_bytes(), path.name)
    logger.info(f"Imported {path} ({len(text)} chars)")
    return text


def write_file(path: str | Path, node: Node, file_type: str | None = None) -> Path:
    """Export ``node`` to ``path``; the file type defaults to the suffix."""
    path = Path(path)
    file_type = file_type or file_type_of(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(export_text(node, file_type))
    logger.info(f"Exported node {node.id} to {path}")
    return path
