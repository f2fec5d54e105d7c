"""Decoding of the assistant turn stream into renderable snapshots."""

from .frames import FrameDecoder, MalformedFrameError, encode_done, encode_frame, iter_events, parse_frame
from .partial_json import IncrementalResponseParser, merge_snapshot, repair_json, scan_top_level_fields
from .decoder import (
    StreamEventDecoder,
    TurnResult,
    TurnState,
    RUN_FAILED_MESSAGE,
    TRANSPORT_FAILED_MESSAGE,
)

__all__ = [
    "FrameDecoder",
    "MalformedFrameError",
    "encode_done",
    "encode_frame",
    "iter_events",
    "parse_frame",
    "IncrementalResponseParser",
    "merge_snapshot",
    "repair_json",
    "scan_top_level_fields",
    "StreamEventDecoder",
    "TurnResult",
    "TurnState",
    "RUN_FAILED_MESSAGE",
    "TRANSPORT_FAILED_MESSAGE",
]
