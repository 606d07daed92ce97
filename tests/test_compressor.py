from __future__ import annotations

import pytest

from switchyard.config import CompressionSettings
from switchyard.context.compressor import TRUNCATION_MARKER, ContextWindowCompressor
from switchyard.types import ReferenceType, Role, Turn


def _exchange(user: str, reply: str) -> list[Turn]:
    return [Turn(role=Role.USER, content=user), Turn(role=Role.HANDLER, content=reply)]


def test_short_history_is_returned_whole() -> None:
    compressor = ContextWindowCompressor()
    turns = _exchange("hello", "hi there") + _exchange("how are you", "fine")

    context = compressor.compress(turns, "next")

    assert context.compression_applied is False
    assert context.turns == tuple(turns)
    assert context.references == ()
    assert context.original_length == 4
    assert context.token_estimate == sum(compressor.estimate(turn.content) for turn in turns)


def test_keeps_last_exchanges_and_preserves_relevant_references() -> None:
    compressor = ContextWindowCompressor()
    turns = [
        Turn(role=Role.USER, content="Earlier I used the academic mode for this"),
        Turn(role=Role.HANDLER, content="Let's try EMDR with patient Ana next session"),
    ]
    for index in range(4):
        turns += _exchange(f"question {index}", f"answer {index}")

    context = compressor.compress(turns, "How should I apply EMDR next week?")

    assert context.compression_applied is True
    assert context.turns == tuple(turns[-8:])
    by_type = {(ref.type, ref.content) for ref in context.references}
    assert (ReferenceType.TECHNIQUE_REFERENCE, "EMDR") in by_type
    assert (ReferenceType.HANDLER_MENTION, "academic mode") in by_type
    assert all(ref.type is not ReferenceType.PATIENT_REFERENCE for ref in context.references)
    relevances = [ref.relevance for ref in context.references]
    assert relevances == sorted(relevances, reverse=True)
    assert context.references[0].content == "EMDR"
    assert context.references[0].relevance == pytest.approx(0.9)


def test_references_are_deduplicated() -> None:
    compressor = ContextWindowCompressor()
    turns = [Turn(role=Role.USER, content="We discussed CBT and then CBT again") for _ in range(3)]
    turns += [Turn(role=Role.USER, content=f"filler {index}") for index in range(8)]

    references = compressor.extract_references(turns[:3], "is CBT still the plan?")

    assert [ref.content for ref in references] == ["CBT"]
    assert references[0].turn_index == 2


def test_high_token_history_keeps_reduced_window() -> None:
    compressor = ContextWindowCompressor()
    turns = [Turn(role=Role.USER if index % 2 == 0 else Role.HANDLER, content="x" * 1200) for index in range(10)]

    context = compressor.compress(turns, "continue")

    assert context.compression_applied is True
    assert len(context.turns) == 4
    assert context.turns == tuple(turns[-4:])
    assert context.token_estimate <= compressor.settings.target_tokens


@pytest.mark.parametrize("turn_chars", [40, 400, 5000])
def test_context_bound_holds_for_long_histories(turn_chars: int) -> None:
    compressor = ContextWindowCompressor()
    turns = [
        Turn(
            role=Role.USER if index % 2 == 0 else Role.HANDLER,
            content=(f"Turn {index} on CBT, mindfulness and the documentation mode. " * 200)[:turn_chars],
        )
        for index in range(500)
    ]

    context = compressor.compress(turns, "what about mindfulness for patient Leo?")

    assert context.compression_applied is True
    assert context.original_length == 500
    assert 1 <= len(context.turns) <= 4
    assert len(context.references) <= compressor.settings.max_references
    assert context.token_estimate <= compressor.settings.target_tokens
    recomputed = sum(compressor.estimate(turn.content) for turn in context.turns)
    recomputed += compressor.estimate(context.annotation()) if context.references else 0
    assert context.token_estimate == recomputed


def test_oversized_turn_is_truncated_in_the_middle() -> None:
    settings = CompressionSettings(target_tokens=200)
    compressor = ContextWindowCompressor(settings)
    turns = [Turn(role=Role.USER, content="HEAD" + "m" * 4000 + "TAIL") for _ in range(3)]

    context = compressor.compress(turns, "next")

    last = context.turns[-1]
    assert TRUNCATION_MARKER in last.content
    assert last.content.startswith("HEAD")
    assert last.content.endswith("TAIL")
    assert context.token_estimate <= 200


def test_messages_put_annotation_first() -> None:
    compressor = ContextWindowCompressor()
    turns = [Turn(role=Role.USER, content="the file I sent yesterday")]
    turns += [Turn(role=Role.USER, content=f"filler {index}") for index in range(8)]

    context = compressor.compress(turns, "can you summarise the file I sent?")
    messages = context.messages()

    assert messages[0]["role"] == "system"
    assert messages[0]["content"].startswith("[Earlier context: session_reference: the file I sent")
    assert messages[1:] == [turn.to_message() for turn in context.turns]
