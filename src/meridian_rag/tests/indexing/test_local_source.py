import pytest

from meridian_rag.indexing.source import LocalDirectoryProvider, TreeEntry, is_code_file, is_excluded


@pytest.mark.parametrize(
    "path, expected",
    [
        ("src/app.ts", True),
        ("src/App.TSX", True),
        ("lib/util.py", True),
        ("README.md", False),
        ("Makefile", False),
        ("styles/site.css", False),
    ],
)
def test_is_code_file(path, expected):
    assert is_code_file(path) is expected


def test_is_code_file_accepts_dotted_extensions():
    assert is_code_file("a.vue", [".vue"])


@pytest.mark.parametrize(
    "path, expected",
    [
        ("node_modules/pkg/index.js", True),
        ("packages/web/dist/bundle.js", True),
        ("src/build.ts", False),
        ("src/distribution/calc.ts", False),
        ("src/app.ts", False),
    ],
)
def test_is_excluded_matches_directory_segments(path, expected):
    assert is_excluded(path) is expected


async def test_tree_lists_blobs_and_trees(provider):
    tree = await provider.get_repository_tree("acme", "shop")
    blobs = {e.path for e in tree if e.type == "blob"}

    assert "src/auth/jwt.ts" in blobs
    assert "README.md" in blobs
    assert TreeEntry("src/auth", "tree") in tree


async def test_file_content(provider, repo_files):
    content = await provider.get_file_content("acme", "shop", "lib/math_utils.py")
    assert content == repo_files["lib/math_utils.py"]


async def test_paths_outside_root_are_rejected(provider):
    with pytest.raises(ValueError):
        await provider.get_file_content("acme", "shop", "../secret.txt")


def test_missing_root(tmp_path):
    with pytest.raises(FileNotFoundError):
        LocalDirectoryProvider(tmp_path / "nope")
