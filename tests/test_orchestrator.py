from __future__ import annotations

import asyncio

import pytest
from conftest import ScriptedInference, call_event, text_event

from switchyard import (
    ErrorChunk,
    HandlerKind,
    ProgressChunk,
    ReferencesChunk,
    RoutingChunk,
    Settings,
    TextChunk,
    build_orchestrator,
)
from switchyard.errors import InferenceError, UnknownHandlerError
from switchyard.inference import ModelEvent
from switchyard.orchestrator import CLARIFICATION_NOTE, Orchestrator
from switchyard.session import InMemorySessionStore
from switchyard.streaming.chunks import ProgressKind, collect_text
from switchyard.tools import LiteratureSearchInput, LiteratureSearchResult
from switchyard.types import Role, Session, Turn

SOCRATIC_TEXT = "Help me explore my patient's resistance"
DOCUMENTATION_TEXT = "Write a SOAP note for this session"
ACADEMIC_TEXT = "What does the research evidence say about EMDR?"


def socratic_classification() -> list[ModelEvent]:
    return [
        call_event("activate_socratic_mode", {"exploration_topic": "resistance", "depth_level": "deep"}),
        call_event(
            "extract_socratic_exploration",
            {"explorations": [{"exploration_type": "case", "subject_matter": "resistance", "confidence": 0.9}]},
        ),
    ]


def documentation_classification() -> list[ModelEvent]:
    return [
        call_event("activate_documentation_mode", {"summary_type": "session"}),
        call_event(
            "extract_documentation_processes",
            {"processes": [{"process": "note writing", "format_type": "SOAP", "confidence": 0.9}]},
        ),
    ]


def academic_classification() -> list[ModelEvent]:
    return [
        call_event("activate_academic_mode", {"search_terms": ["EMDR"]}),
        call_event(
            "extract_academic_validation",
            {"validations": [{"query_type": "evidence", "subject_matter": "EMDR", "confidence": 0.9}]},
        ),
    ]


async def search(params: LiteratureSearchInput) -> LiteratureSearchResult:
    return LiteratureSearchResult(query=params.query)


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def orchestrator(settings: Settings, inference: ScriptedInference, store: InMemorySessionStore) -> Orchestrator:
    return build_orchestrator(settings, inference=inference, store=store, literature_search=search)


async def run(orchestrator: Orchestrator, session_id: str, text: str, *args, **kwargs) -> list:
    return [chunk async for chunk in orchestrator.route_turn(session_id, text, *args, **kwargs)]


async def stored(store: InMemorySessionStore, session_id: str) -> Session:
    session = await store.load(session_id)
    assert session is not None
    return session


@pytest.mark.asyncio
async def test_new_session_is_created_and_turn_recorded(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.append(socratic_classification())
    inference.handler.append([text_event("What do you "), text_event("notice?")])

    chunks = await run(orchestrator, "s1", SOCRATIC_TEXT)

    routing = chunks[0]
    assert isinstance(routing, RoutingChunk)
    assert routing.handler is HandlerKind.SOCRATIC
    assert not routing.clarification_needed
    assert chunks[1:] == [TextChunk("What do you "), TextChunk("notice?")]

    session = await stored(store, "s1")
    assert session.active_handler is HandlerKind.SOCRATIC
    assert [(turn.role, turn.content) for turn in session.turns] == [
        (Role.USER, SOCRATIC_TEXT),
        (Role.HANDLER, "What do you notice?"),
    ]
    assert session.turns[1].handler is HandlerKind.SOCRATIC
    assert "[Detected entities: socratic_exploration: resistance]" in inference.handler_requests[0].parts[0]["content"]


@pytest.mark.asyncio
async def test_explicit_switch_is_a_control_directive(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.append(socratic_classification())
    inference.handler.extend([[text_event("Tell me more.")], [text_event("Documentation mode is ready.")]])
    await run(orchestrator, "s1", SOCRATIC_TEXT)

    chunks = await run(orchestrator, "s1", "activate documentation mode")

    routing = chunks[0]
    assert isinstance(routing, RoutingChunk)
    assert routing.handler is HandlerKind.DOCUMENTATION
    assert routing.confidence == 1.0
    assert routing.explicit
    assert collect_text(chunks) == "Documentation mode is ready."
    assert len(inference.classifier_requests) == 1

    session = await stored(store, "s1")
    assert session.active_handler is HandlerKind.DOCUMENTATION
    assert len(session.turns) == 2

    confirmation = inference.handler_requests[1]
    assert "activate documentation mode" in confirmation.parts[0]["content"]
    assert confirmation.history[-1]["role"] == "system"
    assert [message["content"] for message in confirmation.history[:2]] == [SOCRATIC_TEXT, "Tell me more."]


@pytest.mark.asyncio
async def test_ambiguous_turn_requests_clarification(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.append([call_event("activate_socratic_mode", {})])
    inference.handler.append([text_event("Could you tell me a bit more?")])

    chunks = await run(orchestrator, "s1", "ok")

    routing = chunks[0]
    assert isinstance(routing, RoutingChunk)
    assert routing.clarification_needed
    assert routing.handler is HandlerKind.SOCRATIC
    assert routing.confidence == pytest.approx(0.51)
    assert CLARIFICATION_NOTE in inference.handler_requests[0].parts[0]["content"]

    session = await stored(store, "s1")
    assert session.turns[0].content == "ok"


@pytest.mark.asyncio
async def test_pending_attachment_forces_documentation_handler(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.append(
        [
            call_event("activate_academic_mode", {}),
            call_event(
                "extract_clinical_concepts",
                {"concepts": [{"concept": "attachment style", "type": "construct", "confidence": 0.75}]},
            ),
        ]
    )
    inference.handler.append([text_event("Here is a summary of the document.")])

    chunks = await run(orchestrator, "s1", "What do you make of this?", attachment_ids=["doc-1"])

    routing = chunks[0]
    assert isinstance(routing, RoutingChunk)
    assert routing.handler is HandlerKind.DOCUMENTATION
    assert not routing.clarification_needed

    session = await stored(store, "s1")
    assert session.active_handler is HandlerKind.DOCUMENTATION
    assert session.turns[0].attachment_ids == ("doc-1",)
    assert session.metadata.processed_attachment_ids == ["doc-1"]
    assert session.pending_attachment_ids() == []


@pytest.mark.asyncio
async def test_tool_calls_are_bracketed_by_progress(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.append(academic_classification())
    inference.handler.extend(
        [
            [call_event("search_literature", {"query": "EMDR"}, "c1")],
            [text_event("A meta-analysis supports EMDR.")],
        ]
    )

    chunks = await run(orchestrator, "s1", ACADEMIC_TEXT)

    kinds = [chunk.progress for chunk in chunks if isinstance(chunk, ProgressChunk)]
    assert kinds == [ProgressKind.TOOL_STARTED, ProgressKind.TOOL_COMPLETED]
    completed_at = max(index for index, chunk in enumerate(chunks) if isinstance(chunk, ProgressChunk))
    first_text = min(index for index, chunk in enumerate(chunks) if isinstance(chunk, TextChunk))
    assert completed_at < first_text
    assert [tool.name for tool in inference.handler_requests[0].tools] == ["search_literature"]

    session = await stored(store, "s1")
    assert session.turns[-1].tool_annotations == ({"tool": "search_literature", "call_id": "c1", "status": "ok"},)


@pytest.mark.asyncio
async def test_turns_are_recorded_in_arrival_order_across_handoffs(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.extend([socratic_classification(), documentation_classification(), socratic_classification()])
    inference.handler.extend([[text_event("one")], [text_event("two")], [text_event("ok")], [text_event("three")]])

    await run(orchestrator, "s1", SOCRATIC_TEXT)
    await run(orchestrator, "s1", DOCUMENTATION_TEXT)
    await run(orchestrator, "s1", "switch to academic")
    await run(orchestrator, "s1", "and now back to reflecting on it")

    session = await stored(store, "s1")
    assert [turn.content for turn in session.user_turns()] == [
        SOCRATIC_TEXT,
        DOCUMENTATION_TEXT,
        "and now back to reflecting on it",
    ]
    assert [turn.handler for turn in session.turns if turn.role is Role.HANDLER] == [
        HandlerKind.SOCRATIC,
        HandlerKind.DOCUMENTATION,
        HandlerKind.SOCRATIC,
    ]
    assert session.active_handler is HandlerKind.SOCRATIC


@pytest.mark.asyncio
async def test_concurrent_turns_on_one_session_are_serialized(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.extend([socratic_classification(), documentation_classification()])
    inference.handler.extend([[text_event("first reply")], [text_event("second reply")]])

    await asyncio.gather(run(orchestrator, "s1", SOCRATIC_TEXT), run(orchestrator, "s1", DOCUMENTATION_TEXT))

    session = await stored(store, "s1")
    assert [turn.content for turn in session.turns] == [SOCRATIC_TEXT, "first reply", DOCUMENTATION_TEXT, "second reply"]


@pytest.mark.asyncio
async def test_inference_failure_is_retried_before_text(
    orchestrator: Orchestrator, inference: ScriptedInference
) -> None:
    inference.classifier.append(socratic_classification())
    inference.handler.extend([InferenceError("rate limited"), [text_event("recovered")]])

    chunks = await run(orchestrator, "s1", SOCRATIC_TEXT)

    assert collect_text(chunks) == "recovered"
    assert not any(isinstance(chunk, ErrorChunk) for chunk in chunks)
    assert len(inference.handler_requests) == 2


@pytest.mark.asyncio
async def test_exhausted_retries_emit_error_and_keep_user_turn(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.append(socratic_classification())
    inference.handler.extend([InferenceError("down"), InferenceError("down"), InferenceError("down")])

    chunks = await run(orchestrator, "s1", SOCRATIC_TEXT)

    assert isinstance(chunks[-1], ErrorChunk)
    assert chunks[-1].retryable
    assert len(inference.handler_requests) == 3
    session = await stored(store, "s1")
    assert [turn.role for turn in session.turns] == [Role.USER]


@pytest.mark.asyncio
async def test_failure_after_text_is_not_retried(orchestrator: Orchestrator, inference: ScriptedInference) -> None:
    inference.classifier.append(socratic_classification())
    inference.handler.append([text_event("partial"), InferenceError("connection reset")])

    chunks = await run(orchestrator, "s1", SOCRATIC_TEXT)

    assert chunks[1:] == [TextChunk("partial"), ErrorChunk(error="connection reset", retryable=True)]
    assert len(inference.handler_requests) == 1


@pytest.mark.asyncio
async def test_classifier_outage_falls_back_without_dropping_turn(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.classifier.append(InferenceError("classifier down"))
    inference.handler.append([text_event("Let's think about it together.")])

    chunks = await run(orchestrator, "s1", "I am not sure where to start")

    routing = chunks[0]
    assert isinstance(routing, RoutingChunk)
    assert routing.handler is HandlerKind.SOCRATIC
    assert routing.confidence == pytest.approx(0.3)
    assert collect_text(chunks) == "Let's think about it together."
    session = await stored(store, "s1")
    assert session.turns[0].content == "I am not sure where to start"


@pytest.mark.asyncio
async def test_caller_hint_routes_and_records_turn(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    inference.handler.append([text_event("Searching the evidence.")])

    chunks = await run(orchestrator, "s1", "tell me more", "academic")

    routing = chunks[0]
    assert isinstance(routing, RoutingChunk)
    assert routing.handler is HandlerKind.ACADEMIC
    assert routing.confidence == 1.0
    assert inference.classifier_requests == []
    session = await stored(store, "s1")
    assert [turn.content for turn in session.turns] == ["tell me more", "Searching the evidence."]

    with pytest.raises(UnknownHandlerError):
        await run(orchestrator, "s1", "tell me more", "astrology")


@pytest.mark.asyncio
async def test_references_from_compressed_history_are_emitted(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    session = Session(session_id="s1")
    session.append_turn(Turn(role=Role.USER, content="We started EMDR last month"))
    session.append_turn(Turn(role=Role.HANDLER, content="Noted."))
    for index in range(8):
        session.append_turn(Turn(role=Role.USER if index % 2 == 0 else Role.HANDLER, content=f"filler {index}"))
    await store.save(session)
    inference.classifier.append(socratic_classification())
    inference.handler.append([text_event("Let's look at how EMDR is going.")])

    chunks = await run(orchestrator, "s1", "How is EMDR going so far?")

    assert isinstance(chunks[0], RoutingChunk)
    assert isinstance(chunks[1], ReferencesChunk)
    assert [item["content"] for item in chunks[1].to_list()] == ["EMDR"]
    assert "Context compressed: 10 turns -> 8" in inference.classifier_requests[0].parts[0]["content"]


@pytest.mark.asyncio
async def test_content_mentioning_a_handler_is_not_a_switch(
    orchestrator: Orchestrator, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    text = "Can we go to the research on EMDR for veterans with PTSD?"
    inference.classifier.append(academic_classification())
    inference.handler.append([text_event("ok")])

    chunks = await run(orchestrator, "s1", text)

    routing = chunks[0]
    assert isinstance(routing, RoutingChunk)
    assert not routing.explicit
    assert len(inference.classifier_requests) == 1
    session = await stored(store, "s1")
    assert [turn.content for turn in session.turns] == [text, "ok"]


@pytest.mark.asyncio
async def test_idle_sessions_are_evicted_but_keep_their_history(
    settings: Settings, inference: ScriptedInference, store: InMemorySessionStore
) -> None:
    orchestrator = build_orchestrator(
        settings.model_copy(update={"max_resident_sessions": 1}), inference=inference, store=store
    )
    inference.classifier.append(socratic_classification())
    inference.handler.append([text_event("first")])
    await run(orchestrator, "s1", SOCRATIC_TEXT)
    inference.classifier.append(documentation_classification())
    inference.handler.append([text_event("second")])
    await run(orchestrator, "s2", DOCUMENTATION_TEXT)

    assert not orchestrator.sessions.resident("s1")
    assert orchestrator.sessions.live_context("s1") is None
    assert orchestrator.sessions.resident("s2")

    inference.classifier.append(socratic_classification())
    inference.handler.append([text_event("third")])
    await run(orchestrator, "s1", SOCRATIC_TEXT)

    session = await stored(store, "s1")
    assert [turn.content for turn in session.turns] == [SOCRATIC_TEXT, "first", SOCRATIC_TEXT, "third"]
    assert orchestrator.sessions.resident("s1")
    assert not orchestrator.sessions.resident("s2")
