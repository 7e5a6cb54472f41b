"""meridian_rag.retrieval.chunker

Source-code chunking for the indexing pipeline.

Files written in TypeScript or JavaScript are split along their top-level
declarations using tree-sitter grammars from ``tree_sitter_language_pack``:
function declarations, variables bound to arrow functions or function
expressions, and class declarations (including ``export``-wrapped forms).
Every other file, and any TS/JS file for which structural extraction yields
nothing, is split into overlapping line windows.

Classes
-------
CodeChunker
    Splits a file's content into :class:`~meridian_rag.common.schemas.Chunk` objects.

Functions
---------
detect_language
    Map a file path to a language tag by extension.
extract_structural_chunks
    Structural extraction for TS/JS; returns an empty list on failure.
chunk_by_lines
    Overlapping line-window chunking.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from tree_sitter_language_pack import get_parser

from meridian_rag.common.schemas import Chunk, ChunkType

logger = logging.getLogger(__name__)

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "py": "python",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "php": "php",
    "rb": "ruby",
    "c": "c",
    "cpp": "cpp",
    "cs": "csharp",
    "swift": "swift",
    "kt": "kotlin",
}

# tree-sitter grammar per extension for the structural path.
_GRAMMAR_BY_EXTENSION: dict[str, str] = {
    "ts": "typescript",
    "tsx": "tsx",
    "js": "javascript",
    "jsx": "javascript",
}

_FUNCTION_NODES = frozenset({"function_declaration", "generator_function_declaration"})
_CLASS_NODES = frozenset({"class_declaration", "abstract_class_declaration"})
_VARIABLE_NODES = frozenset({"lexical_declaration", "variable_declaration"})
_FUNCTION_VALUE_NODES = frozenset({"arrow_function", "function_expression", "function"})

DEFAULT_MAX_CHUNK_SIZE = 1500
DEFAULT_OVERLAP = 200


def _extension(file_path: str) -> str:
    name = file_path.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def detect_language(file_path: str) -> str:
    """Return the language tag for ``file_path`` (``"text"`` when unknown)."""
    return LANGUAGE_BY_EXTENSION.get(_extension(file_path), "text")


def _node_name(node: Any) -> Optional[str]:
    name_node = node.child_by_field_name("name")
    if name_node is None or name_node.type not in {"identifier", "type_identifier"}:
        return None
    return name_node.text.decode("utf-8", errors="replace")


def _top_level_declarations(root: Any):
    """Yield top-level declaration nodes, unwrapping ``export`` statements."""
    for child in root.children:
        if child.type == "export_statement":
            for grandchild in child.children:
                yield grandchild
        else:
            yield child


def extract_structural_chunks(
        content: str,
        file_path: str,
        language: str,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    ) -> list[Chunk]:
    """Extract function and class chunks from a TS/JS file.

    Parameters
    ----------
    content : str
        Full file content.
    file_path : str
        Repository-relative path; its extension selects the grammar.
    language : str
        Language tag stored on each chunk.
    max_chunk_size : int, optional
        Functions longer than ``2 * max_chunk_size`` characters and classes
        longer than ``3 * max_chunk_size`` characters are omitted.

    Returns
    -------
    list[Chunk]
        Chunks in source order. Empty when the grammar is unsupported, the
        file does not parse cleanly, or nothing qualifies.
    """
    grammar = _GRAMMAR_BY_EXTENSION.get(_extension(file_path))
    if grammar is None:
        return []

    try:
        source = content.encode("utf-8")
        tree = get_parser(grammar).parse(source)
    except Exception:
        logger.warning("Structural parse failed for %s, using line chunking", file_path, exc_info=True)
        return []

    root = tree.root_node
    if root.has_error:
        logger.debug("Syntax errors in %s, using line chunking", file_path)
        return []

    chunks: list[Chunk] = []

    def _emit(node: Any, chunk_type: ChunkType, name: Optional[str], limit: int) -> None:
        text = source[node.start_byte:node.end_byte].decode("utf-8")
        if len(text) > limit:
            logger.debug("Skipping oversized %s %r in %s (%d chars)", chunk_type.value, name, file_path, len(text))
            return
        chunks.append(
            Chunk(
                content=text,
                file_path=file_path,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                chunk_type=chunk_type,
                language=language,
                metadata={"name": name} if name else {},
            )
        )

    for node in _top_level_declarations(root):
        if node.type in _FUNCTION_NODES:
            _emit(node, ChunkType.FUNCTION, _node_name(node), max_chunk_size * 2)
        elif node.type in _CLASS_NODES:
            _emit(node, ChunkType.CLASS, _node_name(node), max_chunk_size * 3)
        elif node.type in _VARIABLE_NODES:
            for declarator in node.named_children:
                if declarator.type != "variable_declarator":
                    continue
                value = declarator.child_by_field_name("value")
                if value is None or value.type not in _FUNCTION_VALUE_NODES:
                    continue
                _emit(declarator, ChunkType.FUNCTION, _node_name(declarator), max_chunk_size * 2)

    return chunks


def chunk_by_lines(
        content: str,
        file_path: str,
        language: str,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
    ) -> list[Chunk]:
    """Split ``content`` into overlapping windows of whole lines.

    Lines are accumulated until the joined window reaches ``max_chunk_size``
    characters, at which point the window is emitted and reseeded with its
    last ``floor(overlap / average_line_length)`` lines. The trailing window is
    emitted when it holds lines no earlier chunk covers, so every line is
    covered exactly once outside the overlaps and any input yields at least
    one chunk.

    Returns
    -------
    list[Chunk]
        ``module`` chunks in source order.
    """
    lines = content.split("\n")
    chunks: list[Chunk] = []
    window: list[str] = []
    start_line = 1
    # Lines in the window that no emitted chunk has covered yet.
    fresh = 0

    for i, line in enumerate(lines):
        window.append(line)
        fresh += 1
        joined = "\n".join(window)
        if len(joined) < max_chunk_size:
            continue

        chunks.append(
            Chunk(
                content=joined,
                file_path=file_path,
                start_line=start_line,
                end_line=i + 1,
                chunk_type=ChunkType.MODULE,
                language=language,
            )
        )

        avg_line_length = len(joined) / len(window)
        overlap_lines = math.floor(overlap / avg_line_length) if avg_line_length else 0
        # Keep at least one fresh line per window so reseeding always progresses.
        overlap_lines = max(0, min(overlap_lines, len(window) - 1))
        window = window[len(window) - overlap_lines:] if overlap_lines else []
        start_line = i + 2 - overlap_lines
        fresh = 0

    if fresh or not chunks:
        chunks.append(
            Chunk(
                content="\n".join(window),
                file_path=file_path,
                start_line=start_line,
                end_line=len(lines),
                chunk_type=ChunkType.MODULE,
                language=language,
            )
        )

    return chunks


class CodeChunker:
    """Split source files into retrievable chunks.

    Parameters
    ----------
    max_chunk_size : int, optional
        Target chunk size in characters. Defaults to ``1500``.
    overlap : int, optional
        Approximate overlap in characters between line windows. Defaults to ``200``.
    """

    def __init__(
            self,
            max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
            overlap: int = DEFAULT_OVERLAP,
        ):
        self.max_chunk_size = int(max_chunk_size)
        self.overlap = int(overlap)

    @classmethod
    def from_config_dict(cls, config: dict) -> "CodeChunker":
        return cls(
            max_chunk_size=int(config.get("max_chunk_size", DEFAULT_MAX_CHUNK_SIZE)),
            overlap=int(config.get("overlap", DEFAULT_OVERLAP)),
        )

    def chunk_code(
            self,
            content: str,
            file_path: str,
            max_chunk_size: Optional[int] = None,
            overlap: Optional[int] = None,
        ) -> list[Chunk]:
        """Chunk one file.

        Parameters
        ----------
        content : str
            File content.
        file_path : str
            Repository-relative path; determines the language and strategy.
        max_chunk_size, overlap : int or None, optional
            Per-call overrides of the instance defaults.

        Returns
        -------
        list[Chunk]
            Structural chunks for TS/JS when any are found, otherwise line
            windows.
        """
        size = self.max_chunk_size if max_chunk_size is None else int(max_chunk_size)
        ovl = self.overlap if overlap is None else int(overlap)
        language = detect_language(file_path)

        if language in {"typescript", "javascript"}:
            chunks = extract_structural_chunks(content, file_path, language, size)
            if chunks:
                logger.debug("Extracted %d structural chunks from %s", len(chunks), file_path)
                return chunks

        return chunk_by_lines(content, file_path, language, size, ovl)


__all__ = [
    "CodeChunker",
    "LANGUAGE_BY_EXTENSION",
    "chunk_by_lines",
    "detect_language",
    "extract_structural_chunks",
]
