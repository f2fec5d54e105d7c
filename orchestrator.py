"""Conversation session orchestrating streamed assistant turns."""

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from config.settings import Settings
from schemas.context import ConversationTurn, PersonaId, StagedAnswer, TurnRole
from schemas.responses import ResponseSnapshot

# Transport
from llm.base_client import BaseTurnTransport, TransportError

# Memory components
from memory.context_cache import ConversationContextCache
from memory.models import CachedTurn
from memory.state_store import ConversationStateStore

# Routing
from agents.router import AssistantRouter, load_routing_rules

# Streaming and scheduling
from streaming.decoder import StreamEventDecoder, TurnState, TRANSPORT_FAILED_MESSAGE
from scheduling.answer_batching import AnswerBatchingScheduler, format_batch
from scheduling.timers import ResettableTimer

logger = logging.getLogger(__name__)

# Queued by the decode task after its last snapshot
_TURN_DONE = object()


class ConversationSession:
    """
    One user's conversation with the assistant.

    Runs one turn at a time: routes the message to a persona, sends it with
    the cached context, decodes the streamed reply into snapshots and
    records the completed exchange. Answers to the assistant's follow-up
    questions go through an AnswerBatchingScheduler.
    """

    def __init__(
        self,
        transport: BaseTurnTransport,
        executor: Any = None,
        settings: Optional[Settings] = None,
        router: Optional[AssistantRouter] = None,
        cache: Optional[ConversationContextCache] = None,
        state_store: Optional[ConversationStateStore] = None,
        conversation_id: Optional[str] = None,
        basic_context: Optional[Dict[str, Any]] = None,
        on_snapshot: Optional[Callable[[ResponseSnapshot], Any]] = None
    ):
        """
        Initialize session.

        Args:
            transport: Opens turn streams on the remote assistant
            executor: Runs function calls requested mid-turn
            settings: Application settings
            router: Persona router (built from settings when omitted)
            cache: Context cache, may be shared between sessions
            state_store: Routing state store, may be shared between sessions
            conversation_id: Remote thread id when resuming a conversation
            basic_context: User profile details sent with every turn
            on_snapshot: Receives snapshots of turns started by the answer
                scheduler
        """
        self.settings = settings or Settings()
        self.transport = transport
        self.executor = executor
        self.router = router or AssistantRouter(
            load_routing_rules(self.settings.routing_rules_path)
            if self.settings.routing_rules_path else None
        )
        self.cache = cache or ConversationContextCache(self.settings.context_window_size)
        self.state_store = state_store or ConversationStateStore()
        self.basic_context = basic_context
        self.on_snapshot = on_snapshot

        self.session_id = str(uuid.uuid4())
        self.thread_id = conversation_id
        self._history: List[ConversationTurn] = []
        self._lock = asyncio.Lock()
        self._responding = False
        self._turn_task: Optional[asyncio.Task] = None
        self._turn_queue: Optional[asyncio.Queue] = None
        self._turn_aborted = False

        self.scheduler = AnswerBatchingScheduler(
            self._dispatch_answers,
            debounce_seconds=self.settings.answer_debounce_seconds,
            typing_settle_seconds=self.settings.typing_settle_seconds
        )
        self._presentation_timer = ResettableTimer(
            self.settings.presentation_timeout_seconds,
            self._on_presentation_timeout,
            name="presentation timeout"
        )

    @property
    def history(self) -> Tuple[ConversationTurn, ...]:
        """Transcript of the conversation, oldest first."""
        return tuple(self._history)

    @property
    def is_responding(self) -> bool:
        return self._responding

    @property
    def current_persona(self) -> Optional[PersonaId]:
        return self.state_store.get(self.session_id).current_persona

    def send_turn(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[ResponseSnapshot]:
        """
        Send a user message and stream the assistant's reply.

        Args:
            text: User message
            metadata: Extra metadata passed to the transport

        Returns:
            Async iterator of ResponseSnapshot in order, ending with a FINAL
            or ERROR snapshot
        """
        return self._run_turn(text, text, metadata)

    def submit_answers(self, answers: List[StagedAnswer]) -> AsyncIterator[ResponseSnapshot]:
        """
        Send a batch of question answers as one turn.

        The transcript shows the plain answers; the assistant receives each
        answer together with the question it answers.
        """
        display, api_message = format_batch(answers)
        return self._run_turn(api_message, display, None)

    def stage_answer(self, answer: StagedAnswer):
        self.scheduler.stage(answer)

    def on_typing(self, is_typing: bool):
        self.scheduler.on_typing(is_typing)

    async def _run_turn(
        self,
        text: str,
        display_text: str,
        metadata: Optional[Dict[str, Any]]
    ) -> AsyncIterator[ResponseSnapshot]:
        async with self._lock:
            state = self.state_store.get(self.session_id)
            persona = self.router.select(text, state)
            handoff = self.router.handoff_message(state.current_persona, persona)
            if handoff:
                logger.info(f"Handing off from {state.current_persona.value} to {persona.value}")

            self._history.append(ConversationTurn(role=TurnRole.USER, content=display_text))

            turn_metadata = {
                "persona": persona.value,
                "instructions": self._build_instructions(text),
                "basic_context": self.basic_context,
            }
            turn_metadata.update(metadata or {})

            self._responding = True
            self._presentation_timer.start()
            decoder = StreamEventDecoder(
                self.transport,
                executor=self.executor,
                conversation_id=self.thread_id,
                persona=persona
            )
            # abort() cancels only this session-owned decode task
            queue: asyncio.Queue = asyncio.Queue()
            self._turn_queue = queue
            self._turn_aborted = False
            pump = asyncio.ensure_future(self._pump(decoder, text, turn_metadata, queue))
            self._turn_task = pump
            try:
                while True:
                    item = await queue.get()
                    if item is _TURN_DONE or self._turn_aborted:
                        break
                    snapshot = item.model_copy(update={"handoff_message": handoff})
                    if snapshot.is_terminal:
                        # Recorded before the consumer sees the end of the turn
                        self._record_turn(decoder, persona, display_text, snapshot)
                    yield snapshot

                if pump.done() and not pump.cancelled() and pump.exception() is not None:
                    raise pump.exception()
            finally:
                if not pump.done() and not decoder.finished:
                    pump.cancel()
                await asyncio.wait([pump])
                self._responding = False
                self._presentation_timer.cancel()
                self._turn_task = None
                self._turn_queue = None

    async def _pump(
        self,
        decoder: StreamEventDecoder,
        text: str,
        metadata: Dict[str, Any],
        queue: asyncio.Queue
    ):
        """Decode one turn into ``queue``, ending with the done marker."""
        try:
            try:
                stream = await self.transport.send_turn(self.thread_id, text, metadata)
            except TransportError as e:
                for snapshot in decoder.fail(str(e)):
                    queue.put_nowait(snapshot)
                return

            snapshots = decoder.run(stream)
            try:
                async for snapshot in snapshots:
                    queue.put_nowait(snapshot)
            finally:
                await snapshots.aclose()
        finally:
            queue.put_nowait(_TURN_DONE)

    def _build_instructions(self, text: str) -> Optional[str]:
        instructions = self.cache.render_instructions(self.session_id, pending_user_message=text)
        emergency = self.router.check_for_emergency(text)
        if emergency:
            logger.warning(f"Possible emergency in conversation {self.session_id}: {emergency.keyword}")
            safety = (
                f"SAFETY: {emergency.reason}. Set attentionRequired and explain "
                f"in emergencyReasoning before anything else."
            )
            instructions = f"{safety}\n\n{instructions}" if instructions else safety
        return instructions

    def _record_turn(
        self,
        decoder: StreamEventDecoder,
        persona: PersonaId,
        display_text: str,
        last: Optional[ResponseSnapshot]
    ):
        result = decoder.result()
        if result.thread_id:
            self.thread_id = result.thread_id

        state = self.state_store.get(self.session_id).model_copy(update={"current_persona": persona})

        if result.state == TurnState.COMPLETED:
            self._history.append(ConversationTurn(
                role=TurnRole.ASSISTANT,
                content=result.content,
                persona_used=persona
            ))
            self.cache.append(self.session_id, CachedTurn(role=TurnRole.USER, content=display_text))
            self.cache.append(self.session_id, CachedTurn(
                role=TurnRole.ASSISTANT,
                content=result.content,
                persona_used=persona
            ))
            state = self.router.observe_response(state, result.response)
            self.scheduler.begin_questions(len(result.response.questions or []))
        else:
            logger.warning(f"Turn ended in state {result.state.value}: {result.error}")
            self._history.append(ConversationTurn(
                role=TurnRole.ASSISTANT,
                content=(last.fallback_message if last else None) or TRANSPORT_FAILED_MESSAGE,
                persona_used=persona
            ))

        self.state_store.put(self.session_id, state)

    async def _dispatch_answers(self, answers: List[StagedAnswer]):
        async for snapshot in self.submit_answers(answers):
            if self.on_snapshot is not None:
                self.on_snapshot(snapshot)

    def _on_presentation_timeout(self):
        if self._responding:
            logger.warning("Response is taking long, clearing the responding flag")
            self._responding = False

    def clear_task_mode(self):
        """Let the router classify freely again."""
        state = self.state_store.get(self.session_id)
        self.state_store.put(self.session_id, self.router.clear_task_mode(state))

    def abort(self):
        """
        Stop the running turn and every pending timer.

        Only the session's own decode task is cancelled; a caller iterating
        the turn sees the iteration end without a terminal snapshot.
        """
        self.scheduler.cancel()
        self._presentation_timer.cancel()
        self._responding = False
        task = self._turn_task
        if task is not None and not task.done():
            logger.info("Aborting running turn")
            self._turn_aborted = True
            task.cancel()
            if self._turn_queue is not None:
                self._turn_queue.put_nowait(_TURN_DONE)

    def reset(self):
        """Abort and forget the conversation."""
        self.abort()
        self.cache.clear(self.session_id)
        self.state_store.clear(self.session_id)
        self._history.clear()
        self.thread_id = None
        logger.info(f"Session {self.session_id} reset")
