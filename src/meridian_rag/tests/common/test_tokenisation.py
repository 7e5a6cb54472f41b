import pytest

from meridian_rag.common.tokenisation import HeuristicTokenCounter, create_token_counter


@pytest.mark.parametrize(
    "text, expected",
    [
        ("", 0),
        ("a", 1),
        ("abcd", 1),
        ("abcde", 2),
        ("x" * 40, 10),
    ],
)
def test_heuristic_counter_rounds_up(text, expected):
    assert HeuristicTokenCounter().count(text) == expected


def test_heuristic_counter_guards_ratio():
    assert HeuristicTokenCounter(chars_per_token=0).count("abc") == 3


def test_factory_defaults_to_heuristic():
    counter = create_token_counter(None)
    assert isinstance(counter, HeuristicTokenCounter)
    assert counter.chars_per_token == 4


def test_factory_reads_ratio_and_tolerates_garbage():
    assert create_token_counter({"type": "chars", "chars_per_token": "2"}).count("abcd") == 2
    assert create_token_counter({"type": "heuristic", "chars_per_token": "lots"}).chars_per_token == 4


def test_factory_rejects_unknown_type():
    with pytest.raises(ValueError, match="Unknown tokenization type"):
        create_token_counter({"type": "sentencepiece"})
