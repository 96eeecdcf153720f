import pytest

from burrow.chat.history import (
    consolidate_model_output,
    extract_curated_history,
    is_valid_content,
    merge_text_turn,
    validate_history,
)
from burrow.chat.types import EmptyPart, FunctionCallPart, TextPart, ThoughtPart, Turn
from burrow.errors import HistoryValidationError


def _user(text: str) -> Turn:
    return Turn(role="user", parts=[TextPart(text)])


def _model(text: str) -> Turn:
    return Turn(role="model", parts=[TextPart(text)])


def test_validate_history_rejects_unknown_roles() -> None:
    validate_history([_user("hi"), _model("hello")])
    with pytest.raises(HistoryValidationError, match="system"):
        validate_history([_user("hi"), Turn(role="system", parts=[TextPart("x")])])


def test_invalid_content_detection() -> None:
    assert is_valid_content(_model("ok"))
    assert not is_valid_content(Turn(role="model", parts=[]))
    assert not is_valid_content(_model(""))
    assert not is_valid_content(Turn(role="model", parts=[EmptyPart()]))
    assert is_valid_content(Turn(role="model", parts=[ThoughtPart("thinking")]))
    assert is_valid_content(Turn(role="model", parts=[FunctionCallPart(name="ls")]))


def test_curated_history_drops_invalid_model_runs() -> None:
    history = [
        _user("one"),
        _model("fine"),
        _user("two"),
        Turn(role="model", parts=[]),
        _model("after empty"),
        _user("three"),
    ]
    curated = extract_curated_history(history)
    assert [turn.role for turn in curated] == ["user", "model", "user"]
    assert curated[0].text == "one"
    assert curated[1].text == "fine"
    assert [part.text for part in curated[2].parts] == ["two", "three"]


def test_curated_history_never_starts_with_model_and_alternates() -> None:
    history = [
        _model("orphan"),
        _user("a"),
        _user("b"),
        _model("x"),
        _model("y"),
        Turn(role="model", parts=[]),
        _user("c"),
        _model("z"),
    ]
    curated = extract_curated_history(history)
    assert curated[0].role == "user"
    for previous, current in zip(curated, curated[1:], strict=False):
        assert previous.role != current.role


def test_curated_history_does_not_alias_input_parts() -> None:
    history = [_user("a"), _model("b")]
    curated = extract_curated_history(history)
    curated[0].parts.append(TextPart("mutated"))
    assert len(history[0].parts) == 1


def test_consolidate_model_output_drops_thoughts_and_merges_text() -> None:
    parts = [ThoughtPart("plan"), TextPart("Hello, "), TextPart("world"), FunctionCallPart(name="ls"), TextPart("!")]
    assert consolidate_model_output(parts) == [
        TextPart("Hello, world"),
        FunctionCallPart(name="ls"),
        TextPart("!"),
    ]


@pytest.mark.parametrize(
    "texts",
    [
        ["a", "b"],
        ["first line\n", "second line"],
        ["", "only second"],
        ["ünïcödé ", "✓"],
    ],
)
def test_merged_text_keeps_concatenated_content(texts: list[str]) -> None:
    first = Turn(role="model", parts=[TextPart(texts[0] or "seed")])
    second = Turn(role="model", parts=[TextPart(texts[1]), FunctionCallPart(name="tail")])
    expected = first.text + second.text
    merge_text_turn(first, second)
    assert first.text == expected
    assert first.parts[-1] == FunctionCallPart(name="tail")


def test_merge_rejects_turns_that_do_not_start_with_text() -> None:
    text_turn = Turn(role="model", parts=[TextPart("answer")])
    call_turn = Turn(role="model", parts=[FunctionCallPart(name="ls")])

    with pytest.raises(TypeError, match="text part"):
        merge_text_turn(text_turn, call_turn)
    assert text_turn.parts == [TextPart("answer")]
