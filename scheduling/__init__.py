"""Time-driven scheduling for batched question answers."""

from .timers import ResettableTimer
from .answer_batching import AnswerBatchingScheduler, format_batch

__all__ = [
    "ResettableTimer",
    "AnswerBatchingScheduler",
    "format_batch",
]
