"""Turn orchestration: route, hand off, stream and record."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence

from loguru import logger

from switchyard.config import Settings, load_settings
from switchyard.errors import InferenceError
from switchyard.handlers import HandlerCatalog, build_default_catalog
from switchyard.inference import GenerationRequest, InferenceService, user_part
from switchyard.integrations.republic_client import RepublicInference
from switchyard.logging_utils import bind_session
from switchyard.routing import IntentClassifier, IntentRouter, RoutingDecision
from switchyard.session import AttachmentResolver, InMemorySessionStore, SessionManager, SessionStore
from switchyard.session.cache import SessionCaches
from switchyard.streaming import (
    ErrorChunk,
    ExecutionStream,
    OutputChunk,
    ReferencesChunk,
    RoutingChunk,
    StreamingExecutionEngine,
)
from switchyard.tools import ToolRegistry, register_literature_tool
from switchyard.tools.literature import LiteratureSearch
from switchyard.types import HandlerKind, Role, Session, Turn

CLARIFICATION_NOTE = (
    "[Routing note] The intent of this message is unclear. Answer briefly and ask one short "
    "question to clarify whether the clinician wants reflective exploration, clinical "
    "documentation or a research-based answer."
)


class Orchestrator:
    """Entry point for callers: `route_turn` yields the ordered output of one turn.

    Turns of one session are processed strictly one at a time. Chunks are emitted in
    this order: one `RoutingChunk`, an optional `ReferencesChunk`, then the handler's
    text and progress chunks, or an `ErrorChunk` once inference retries are exhausted.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        catalog: HandlerCatalog,
        sessions: SessionManager,
        router: IntentRouter,
        engine: StreamingExecutionEngine,
        tools: ToolRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._catalog = catalog
        self._sessions = sessions
        self._router = router
        self._engine = engine
        self._tools = tools

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    async def route_turn(
        self,
        session_id: str,
        text: str,
        explicit_handler_hint: HandlerKind | str | None = None,
        *,
        attachment_ids: Sequence[str] = (),
    ) -> AsyncIterator[OutputChunk]:
        hint = None
        if explicit_handler_hint is not None:
            hint = (
                explicit_handler_hint
                if isinstance(explicit_handler_hint, HandlerKind)
                else self._catalog.parse_kind(explicit_handler_hint)
            )
        async with self._sessions.turn(session_id):
            with bind_session(session_id):
                async for chunk in self._process(session_id, text, hint, tuple(attachment_ids)):
                    yield chunk

    async def _process(
        self,
        session_id: str,
        text: str,
        hint: HandlerKind | None,
        attachment_ids: tuple[str, ...],
    ) -> AsyncIterator[OutputChunk]:
        session = await self._sessions.load_or_create(session_id)
        caches = self._sessions.caches(session_id)
        pending = await self._sessions.pending_attachments(session)
        pending.extend(item for item in attachment_ids if item not in pending)

        decision = await self._router.route(
            session,
            text,
            hint=hint,
            caches=caches,
            pending_attachments=bool(pending),
        )
        yield RoutingChunk(
            handler=decision.handler,
            confidence=decision.confidence,
            clarification_needed=decision.clarification_needed,
            explicit=decision.explicit or decision.hinted,
            rationale=decision.rationale,
        )

        live = await self._sessions.activate(session, decision.handler)
        profile = live.profile

        if decision.is_control:
            await self._sessions.save(session)
            prompt = profile.confirmation_prompt.format(message=text)
            request = live.build_request(
                session.turns,
                [user_part(prompt)],
                model=self._settings.model,
                extra_params={"max_tokens": self._settings.max_tokens},
            )
            async for chunk in self._stream(request, caches, turn_index=None):
                if not isinstance(chunk, ExecutionStream):
                    yield chunk
            logger.info("orchestrator.turn.switched handler={}", decision.handler)
            return

        if decision.context is not None and decision.context.references:
            yield ReferencesChunk(decision.context.references)

        await self._sessions.append(session, Turn(role=Role.USER, content=text, attachment_ids=attachment_ids))
        tools = self._tools.model_tools(profile.tool_names) if self._tools is not None and profile.tool_names else []
        request = live.build_request(
            session.turns[:-1],
            [user_part(self._handler_message(text, decision))],
            tools=tools,
            model=self._settings.model,
            extra_params={"max_tokens": self._settings.max_tokens},
        )

        stream: ExecutionStream | None = None
        async for chunk in self._stream(request, caches, turn_index=len(session.turns) - 1):
            if isinstance(chunk, ExecutionStream):
                stream = chunk
                continue
            yield chunk

        if stream is None:
            return
        await self._record_reply(session, decision, stream, pending)

    async def _stream(
        self,
        request: GenerationRequest,
        caches: SessionCaches,
        *,
        turn_index: int | None,
    ) -> AsyncIterator[OutputChunk | ExecutionStream]:
        """Stream one reply with bounded retries; ends with the finished stream on success.

        A failed attempt is retried only while no text has reached the caller.
        """
        attempt = 0
        while True:
            stream = self._engine.stream(request, cache=caches.tool_results, turn_index=turn_index)
            try:
                async for chunk in stream:
                    yield chunk
            except InferenceError as exc:
                if stream.emitted_text or not exc.retryable or attempt >= self._settings.max_inference_retries:
                    logger.error("orchestrator.inference.failed attempts={} error={}", attempt + 1, exc)
                    yield ErrorChunk(error=str(exc), retryable=exc.retryable)
                    return
                attempt += 1
                logger.warning("orchestrator.inference.retry attempt={} error={}", attempt, exc)
                continue
            yield stream
            return

    async def _record_reply(
        self,
        session: Session,
        decision: RoutingDecision,
        stream: ExecutionStream,
        pending: list[str],
    ) -> None:
        annotations = stream.tool_annotations()
        if stream.text or annotations:
            turn = Turn(
                role=Role.HANDLER,
                content=stream.text,
                handler=decision.handler,
                tool_annotations=tuple(annotations),
            )
            session.append_turn(turn)
        if decision.handler is HandlerKind.DOCUMENTATION and pending:
            session.mark_attachments_processed(pending)
        await self._sessions.save(session)
        logger.info(
            "orchestrator.turn.done handler={} chars={} tools={}",
            decision.handler,
            len(stream.text),
            len(annotations),
        )

    @staticmethod
    def _handler_message(text: str, decision: RoutingDecision) -> str:
        message = text
        if decision.classification is not None and decision.classification.entities:
            rendered = ", ".join(f"{entity.type}: {entity.value}" for entity in decision.classification.entities)
            message = f"{message}\n\n[Detected entities: {rendered}]"
        if decision.clarification_needed:
            message = f"{message}\n\n{CLARIFICATION_NOTE}"
        return message


def build_orchestrator(
    settings: Settings | None = None,
    *,
    inference: InferenceService | None = None,
    store: SessionStore | None = None,
    tools: ToolRegistry | None = None,
    literature_search: LiteratureSearch | None = None,
    resolver: AttachmentResolver | None = None,
) -> Orchestrator:
    """Wire the default components; every collaborator can be replaced."""

    settings = settings or load_settings()
    if inference is None:
        inference = RepublicInference(settings)
    catalog = build_default_catalog(settings)
    registry = tools or ToolRegistry()
    if literature_search is not None:
        register_literature_tool(registry, literature_search)

    sessions = SessionManager(
        store or InMemorySessionStore(),
        catalog,
        resolver=resolver,
        max_resident_sessions=settings.max_resident_sessions,
    )
    classifier = IntentClassifier(inference, catalog, settings=settings)
    router = IntentRouter(catalog, classifier, settings=settings)
    engine = StreamingExecutionEngine(
        inference,
        registry,
        tool_timeout_seconds=settings.tool_timeout_seconds,
        max_inflight_tools=settings.max_inflight_tools,
    )
    return Orchestrator(
        settings=settings,
        catalog=catalog,
        sessions=sessions,
        router=router,
        engine=engine,
        tools=registry,
    )
