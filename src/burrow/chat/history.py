"""History validation, curation and consolidation helpers."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from burrow.chat.types import (
    MODEL_ROLE,
    USER_ROLE,
    GenerateContentResponse,
    Part,
    TextPart,
    ThoughtPart,
    Turn,
    is_empty_part,
)
from burrow.errors import HistoryValidationError


def validate_history(history: Iterable[Turn]) -> None:
    """Reject any turn whose role is neither user nor model."""
    for turn in history:
        if turn.role not in (USER_ROLE, MODEL_ROLE):
            raise HistoryValidationError(f"Role must be user or model, but got {turn.role}.")


def is_valid_content(turn: Turn) -> bool:
    if not turn.parts:
        return False
    for part in turn.parts:
        if is_empty_part(part):
            return False
        if isinstance(part, TextPart) and part.text == "":
            return False
    return True


def is_valid_response(response: GenerateContentResponse) -> bool:
    if response.content is None:
        return False
    return is_valid_content(response.content)


def _append_coalesced(curated: list[Turn], turn: Turn) -> None:
    if curated and curated[-1].role == turn.role:
        previous = curated[-1]
        curated[-1] = Turn(role=previous.role, parts=[*previous.parts, *turn.parts])
        return
    curated.append(Turn(role=turn.role, parts=list(turn.parts)))


def extract_curated_history(history: Sequence[Turn]) -> list[Turn]:
    """Derive the turns that can be resent to the model.

    User turns are always kept. A run of consecutive model turns is kept only
    when every turn in it is valid. Model turns that would lead the view are
    dropped and neighbouring turns of the same role are coalesced, so the
    result alternates strictly and starts with a user turn.
    """
    curated: list[Turn] = []
    index = 0
    length = len(history)
    while index < length:
        turn = history[index]
        if turn.role == USER_ROLE:
            _append_coalesced(curated, turn)
            index += 1
        elif turn.role == MODEL_ROLE:
            run: list[Turn] = []
            valid = True
            while index < length and history[index].role == MODEL_ROLE:
                run.append(history[index])
                if valid and not is_valid_content(history[index]):
                    valid = False
                index += 1
            if valid and curated:
                for model_turn in run:
                    _append_coalesced(curated, model_turn)
        else:
            index += 1
    return curated


def consolidate_model_output(parts: Iterable[Part]) -> list[Part]:
    """Drop thought parts and merge adjacent text parts into one."""
    consolidated: list[Part] = []
    for part in parts:
        if isinstance(part, ThoughtPart):
            continue
        if isinstance(part, TextPart) and consolidated and isinstance(consolidated[-1], TextPart):
            consolidated[-1] = TextPart(consolidated[-1].text + part.text)
        else:
            consolidated.append(part)
    return consolidated


def is_text_turn(turn: Turn | None) -> bool:
    return (
        turn is not None
        and turn.role == MODEL_ROLE
        and bool(turn.parts)
        and isinstance(turn.parts[0], TextPart)
        and turn.parts[0].text != ""
    )


def is_thought_turn(turn: Turn | None) -> bool:
    return turn is not None and turn.role == MODEL_ROLE and bool(turn.parts) and isinstance(turn.parts[0], ThoughtPart)


def merge_text_turn(previous: Turn, turn: Turn) -> None:
    """Append a text-leading model turn into a preceding text-leading model turn."""
    head = previous.parts[0]
    addition = turn.parts[0]
    if not isinstance(head, TextPart) or not isinstance(addition, TextPart):
        raise TypeError("merge_text_turn requires both turns to start with a text part")
    previous.parts[0] = TextPart(head.text + addition.text)
    previous.parts.extend(turn.parts[1:])
