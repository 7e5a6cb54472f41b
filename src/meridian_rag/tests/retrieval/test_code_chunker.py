import pytest

from meridian_rag.common.schemas import ChunkType
from meridian_rag.retrieval.chunker import (
    CodeChunker,
    chunk_by_lines,
    detect_language,
    extract_structural_chunks,
)


USER_TS = """import { db } from "./db";

export function getUserById(id: string) {
  return db.users.find((u) => u.id === id);
}

export class UserService {
  constructor(private readonly repo: Repo) {}

  async list() {
    return this.repo.all();
  }
}
"""


def _lines(content: str, chunk):
    return "\n".join(content.split("\n")[chunk.start_line - 1:chunk.end_line])


@pytest.mark.parametrize(
    "path, expected",
    [
        ("src/a.ts", "typescript"),
        ("src/a.tsx", "typescript"),
        ("lib/b.JS", "javascript"),
        ("pkg/c.py", "python"),
        ("cmd/main.go", "go"),
        ("Makefile", "text"),
        ("notes.md", "text"),
    ],
)
def test_detect_language(path, expected):
    assert detect_language(path) == expected


def test_function_and_class_give_exactly_two_named_chunks():
    chunks = CodeChunker().chunk_code(USER_TS, "src/users.ts")

    assert len(chunks) == 2
    fn, cls = chunks
    assert fn.chunk_type == ChunkType.FUNCTION
    assert fn.metadata == {"name": "getUserById"}
    assert cls.chunk_type == ChunkType.CLASS
    assert cls.metadata == {"name": "UserService"}
    assert all(c.language == "typescript" for c in chunks)


def test_structural_chunks_are_exact_substrings_at_their_lines():
    chunks = extract_structural_chunks(USER_TS, "src/users.ts", "typescript")

    for chunk in chunks:
        assert chunk.content in USER_TS
        assert chunk.start_line <= chunk.end_line
        # The node text starts at its first line and ends at its last.
        span = _lines(USER_TS, chunk)
        assert chunk.content in span


def test_structural_chunks_do_not_overlap():
    chunks = extract_structural_chunks(USER_TS, "src/users.ts", "typescript")
    ordered = sorted(chunks, key=lambda c: c.start_line)
    for prev, nxt in zip(ordered, ordered[1:]):
        assert prev.end_line < nxt.start_line


def test_arrow_function_binding_is_a_function_chunk():
    src = "const add = (a, b) => a + b;\nconst limit = 10;\n"
    chunks = extract_structural_chunks(src, "math.js", "javascript")

    assert [c.metadata.get("name") for c in chunks] == ["add"]
    assert chunks[0].chunk_type == ChunkType.FUNCTION
    assert chunks[0].start_line == 1 and chunks[0].end_line == 1


def test_oversized_function_is_skipped():
    body = "\n".join(f"  const v{i} = {i};" for i in range(100))
    src = f"function big() {{\n{body}\n}}\n\nfunction small() {{ return 1; }}\n"
    chunks = extract_structural_chunks(src, "big.js", "javascript", max_chunk_size=200)

    assert [c.metadata["name"] for c in chunks] == ["small"]


def test_syntax_error_falls_back_to_lines():
    src = "export function broken( {\n  return ;\n"
    assert extract_structural_chunks(src, "broken.ts", "typescript") == []

    chunks = CodeChunker().chunk_code(src, "broken.ts")
    assert len(chunks) == 1
    assert chunks[0].chunk_type == ChunkType.MODULE
    assert chunks[0].content == src


def test_ts_without_declarations_uses_line_chunks():
    src = "import x from 'y';\nconsole.log(x);\n"
    chunks = CodeChunker().chunk_code(src, "main.ts")
    assert [c.chunk_type for c in chunks] == [ChunkType.MODULE]


def test_non_ts_files_use_line_chunks():
    src = "def f():\n    return 1\n"
    chunks = CodeChunker().chunk_code(src, "pkg/f.py")
    assert len(chunks) == 1
    assert chunks[0].language == "python"
    assert chunks[0].start_line == 1
    assert chunks[0].end_line == 3


def test_line_chunks_cover_every_line_with_overlap():
    content = "\n".join(f"line {i:03d} " + "x" * 30 for i in range(200))
    chunks = chunk_by_lines(content, "big.py", "python", max_chunk_size=500, overlap=100)

    assert len(chunks) > 1
    assert chunks[0].start_line == 1
    assert chunks[-1].end_line == 200
    for prev, nxt in zip(chunks, chunks[1:]):
        # Windows overlap (or touch) and always move forward.
        assert nxt.start_line <= prev.end_line + 1
        assert nxt.start_line > prev.start_line
    for chunk in chunks:
        assert chunk.content == _lines(content, chunk)


def test_zero_overlap_windows_are_contiguous():
    content = "\n".join("y" * 40 for _ in range(50))
    chunks = chunk_by_lines(content, "f.rb", "ruby", max_chunk_size=200, overlap=0)

    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_line == prev.end_line + 1


def test_overlap_larger_than_window_never_stalls():
    content = "\n".join("z" * 80 for _ in range(30))
    chunks = chunk_by_lines(content, "f.go", "go", max_chunk_size=100, overlap=10_000)

    assert chunks[-1].end_line == 30
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.end_line > prev.end_line


def test_window_ending_on_last_line_adds_no_tail_chunk():
    content = "\n".join("a" * 59 for _ in range(26))
    chunks = CodeChunker().chunk_code(content, "lib/util.py")

    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 26)]


def test_tail_chunk_only_carries_uncovered_lines():
    content = "\n".join("b" * 59 for _ in range(27))
    chunks = CodeChunker().chunk_code(content, "lib/util.py")

    assert len(chunks) == 2
    assert chunks[0].end_line == 26
    assert chunks[1].end_line == 27
    assert chunks[1].start_line <= 26


def test_empty_content_gives_one_empty_chunk():
    chunks = CodeChunker().chunk_code("", "empty.py")
    assert len(chunks) == 1
    assert chunks[0].content == ""


def test_per_call_overrides():
    content = "\n".join("q" * 50 for _ in range(40))
    chunker = CodeChunker(max_chunk_size=10_000)
    assert len(chunker.chunk_code(content, "a.py")) == 1
    assert len(chunker.chunk_code(content, "a.py", max_chunk_size=300, overlap=0)) > 1


def test_from_config_dict():
    chunker = CodeChunker.from_config_dict({"max_chunk_size": 800, "overlap": 50})
    assert chunker.max_chunk_size == 800
    assert chunker.overlap == 50
