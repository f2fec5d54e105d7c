"""Batching of rapid-fire answers to the assistant's follow-up questions."""

import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional, Set, Tuple

from schemas.context import StagedAnswer
from .timers import ResettableTimer

logger = logging.getLogger(__name__)


def format_batch(answers: List[StagedAnswer]) -> Tuple[str, str]:
    """
    Build the two renderings of a dispatched batch.

    Returns:
        (display message shown in the transcript, message sent to the
        assistant with each answer tied to its question)
    """
    display = ", ".join(answer.answer_text for answer in answers)
    api_message = " ".join(
        f'{answer.answer_text} (answering: "{answer.question_text}")' for answer in answers
    )
    return display, api_message


class AnswerBatchingScheduler:
    """
    Collects answers to a set of displayed questions and dispatches them once.

    While more than one question is outstanding, each staged answer restarts
    a debounce timer; the batch goes out when the timer expires, when the
    last outstanding question is answered, or as soon as the user starts
    typing. A single outstanding question bypasses batching entirely.
    """

    DEFAULT_DEBOUNCE_SECONDS = 10.0
    DEFAULT_TYPING_SETTLE_SECONDS = 0.5

    def __init__(
        self,
        dispatch: Callable[[List[StagedAnswer]], Any],
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        typing_settle_seconds: float = DEFAULT_TYPING_SETTLE_SECONDS
    ):
        """
        Initialize scheduler.

        Args:
            dispatch: Called once per batch with the staged answers in
                staging order; may be a coroutine function
            debounce_seconds: Pause after the latest answer before dispatch
            typing_settle_seconds: Pause after which typing counts as stopped
        """
        self.dispatch = dispatch
        self._staged: List[StagedAnswer] = []
        self._question_count = 0
        self._typing = False
        self._debounce = ResettableTimer(debounce_seconds, self._on_debounce_expired, name="answer debounce")
        self._typing_settle = ResettableTimer(typing_settle_seconds, self._on_typing_settled, name="typing settle")
        self._dispatch_tasks: Set[asyncio.Task] = set()

    @property
    def staged(self) -> List[StagedAnswer]:
        return list(self._staged)

    @property
    def is_typing(self) -> bool:
        return self._typing

    @property
    def batching(self) -> bool:
        return self._question_count > 1

    @property
    def pending_questions(self) -> int:
        return max(self._question_count - len(self._staged), 0)

    @property
    def timer_active(self) -> bool:
        return self._debounce.active

    @property
    def typing_timer_active(self) -> bool:
        return self._typing_settle.active

    def begin_questions(self, count: int):
        """
        Register the questions of a newly displayed reply.

        Answers still staged for the previous set are dispatched first.
        """
        if self._staged:
            self.flush()
        self._question_count = max(count, 0)
        logger.debug(f"{self._question_count} question(s) outstanding, batching={self.batching}")

    def stage(self, answer: StagedAnswer):
        """
        Stage an answer, dispatching at once when batching does not apply.

        A second answer to the same question replaces the first one in place.
        """
        if not self.batching:
            self._emit([answer])
            return

        for i, existing in enumerate(self._staged):
            if existing.question_id == answer.question_id:
                self._staged[i] = answer
                break
        else:
            self._staged.append(answer)

        if self._typing:
            logger.debug("Answer staged while typing, dispatching now")
            self.flush()
        elif self.pending_questions == 0:
            logger.debug("Last outstanding question answered, dispatching now")
            self.flush()
        else:
            self._debounce.start()

    def on_typing(self, is_typing: bool):
        """
        Feed a typing signal from the composer.

        Typing interrupts the batching pause and sends whatever is staged.
        Typing only counts as stopped after the settle delay.
        """
        if is_typing:
            self._typing = True
            self._typing_settle.start()
            if self._staged:
                logger.debug("User started typing, dispatching staged answers")
                self.flush()
        elif self._typing and not self._typing_settle.active:
            self._typing_settle.start()

    def flush(self):
        """Dispatch every staged answer now."""
        self._debounce.cancel()
        if not self._staged:
            return
        answers, self._staged = self._staged, []
        self._question_count = 0
        self._emit(answers)

    def cancel(self):
        """Drop staged answers, stop both timers and cancel running dispatches."""
        self._debounce.cancel()
        self._typing_settle.cancel()
        dropped = len(self._staged)
        self._staged = []
        self._question_count = 0
        self._typing = False
        if dropped:
            logger.info(f"Discarded {dropped} staged answer(s)")
        for task in list(self._dispatch_tasks):
            if not task.done():
                logger.info("Cancelling in-flight answer dispatch")
                task.cancel()

    async def wait_dispatched(self):
        """Wait for coroutine dispatches that are still running."""
        if self._dispatch_tasks:
            await asyncio.gather(*self._dispatch_tasks, return_exceptions=True)

    def _emit(self, answers: List[StagedAnswer]):
        logger.info(f"Dispatching batch of {len(answers)} answer(s)")
        result = self.dispatch(answers)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._dispatch_tasks.add(task)
            task.add_done_callback(self._dispatch_done)

    def _dispatch_done(self, task: asyncio.Task):
        self._dispatch_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Answer dispatch failed: {task.exception()}")

    def _on_debounce_expired(self):
        logger.debug("Batching pause elapsed")
        self.flush()

    def _on_typing_settled(self):
        self._typing = False
