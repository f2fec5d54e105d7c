"""
Incremental parsing of assistant JSON that is still streaming.

The assistant answers with a single JSON object. While it streams, the
accumulated text is almost never valid JSON, so this module:

1. Scans the top-level object and records which fields have a structurally
   closed value (no open string, array or object).
2. Repairs "still streaming" truncations (open string, open array/object,
   trailing comma, dangling key or colon, partial literal) so an open
   top-level array can expose the elements that are already closed.
3. Merges each extraction over the previous snapshot so a field never
   disappears or shrinks within a turn.

Nothing here raises on bad input; the worst case is the previous snapshot.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from schemas.responses import PartialResponse

logger = logging.getLogger(__name__)

_WS = " \t\r\n"
_SCALAR_TERMINATORS = ",}]" + _WS
_STRUCTURAL = "{}[],:\"" + _WS
_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_LITERALS = ("true", "false", "null")
_OPEN_FENCE_RE = re.compile(r"^\s*```(?:json)?[ \t]*\n?", re.IGNORECASE)
_CLOSE_FENCE_RE = re.compile(r"\n?```\s*$")
_PARTIAL_UNICODE_RE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")


@dataclass
class FieldSpan:
    """Location of one top-level field value in the accumulated text."""
    key: str
    start: int
    end: Optional[int]  # None while the value is still open
    complete_items: int = 0  # closed elements of an open array

    @property
    def closed(self) -> bool:
        return self.end is not None


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json fence, complete or not."""
    text = _OPEN_FENCE_RE.sub("", text, count=1)
    return _CLOSE_FENCE_RE.sub("", text)


def _find_json_start(text: str, containers: str = "{[") -> Optional[int]:
    positions = [text.find(c) for c in containers if text.find(c) >= 0]
    return min(positions) if positions else None


def _skip_ws(text: str, i: int) -> int:
    while i < len(text) and text[i] in _WS:
        i += 1
    return i


def _scan_string(text: str, pos: int) -> Optional[int]:
    """Return the index after the string opening at ``pos``, or None if open."""
    i = pos + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return i + 1
        i += 1
    return None


def _scan_value(text: str, pos: int) -> Tuple[Optional[int], int]:
    """
    Scan the JSON value starting at ``pos``.

    Returns:
        (end, complete_items) where ``end`` is None when the value is still
        open and ``complete_items`` counts closed elements of an array
    """
    first = text[pos]
    if first == '"':
        return _scan_string(text, pos), 0

    if first in "{[":
        depth = 0
        items = 0
        last_closed = False
        i = pos
        while i < len(text):
            ch = text[i]
            if ch == '"':
                end = _scan_string(text, i)
                if end is None:
                    break
                if depth == 1:
                    last_closed = True
                i = end
                continue
            if ch in "{[":
                depth += 1
                if depth == 2:
                    last_closed = False
            elif ch in "}]":
                depth -= 1
                if depth == 0:
                    return i + 1, items + (1 if last_closed else 0)
                if depth == 1:
                    last_closed = True
            elif depth == 1:
                if ch == ",":
                    items += 1
                    last_closed = False
                elif ch not in _WS:
                    last_closed = False
            i += 1
        return None, items + (1 if last_closed else 0)

    # Numbers and literals only close once a terminator follows them
    i = pos
    while i < len(text) and text[i] not in _SCALAR_TERMINATORS:
        i += 1
    if i >= len(text):
        return None, 0
    return i, 0


def scan_top_level_fields(text: str) -> List[FieldSpan]:
    """
    List the fields of the top-level JSON object in order of appearance.

    Scanning stops at the first field whose value is still open; that field
    is included with ``end=None``.
    """
    spans: List[FieldSpan] = []
    start = _find_json_start(text, "{")
    if start is None:
        return spans

    i = start + 1
    n = len(text)
    while True:
        i = _skip_ws(text, i)
        if i >= n or text[i] == "}":
            break
        if text[i] == ",":
            i += 1
            continue
        if text[i] != '"':
            break
        key_end = _scan_string(text, i)
        if key_end is None:
            break
        try:
            key = json.loads(text[i:key_end])
        except ValueError:
            break
        i = _skip_ws(text, key_end)
        if i >= n or text[i] != ":":
            break
        i = _skip_ws(text, i + 1)
        if i >= n:
            break
        end, items = _scan_value(text, i)
        spans.append(FieldSpan(key=key, start=i, end=end, complete_items=items))
        if end is None:
            break
        i = end
    return spans


def _drop_trailing_key(text: str) -> str:
    """Remove a closed key string at the end of ``text``."""
    stripped = text.rstrip(_WS)
    if not stripped.endswith('"'):
        return stripped
    i = len(stripped) - 2
    while i >= 0:
        if stripped[i] == '"':
            backslashes = 0
            j = i - 1
            while j >= 0 and stripped[j] == "\\":
                backslashes += 1
                j -= 1
            if backslashes % 2 == 0:
                return stripped[:i]
        i -= 1
    return stripped


def _trim_dangling(text: str) -> str:
    """Drop trailing commas, colons with their key, and unfinished scalars."""
    while True:
        stripped = text.rstrip(_WS)
        if stripped.endswith(","):
            text = stripped[:-1]
            continue
        if stripped.endswith(":"):
            text = _drop_trailing_key(stripped[:-1])
            continue

        token_start = len(stripped)
        while token_start > 0 and stripped[token_start - 1] not in _STRUCTURAL:
            token_start -= 1
        token = stripped[token_start:]
        if not token or token in _LITERALS or _NUMBER_RE.fullmatch(token):
            return stripped
        text = stripped[:token_start]


def _close_open_string(text: str, escape_pending: bool) -> str:
    if escape_pending:
        text = text[:-1]
    match = _PARTIAL_UNICODE_RE.search(text)
    if match:
        backslashes = 0
        j = match.start() - 1
        while j >= 0 and text[j] == "\\":
            backslashes += 1
            j -= 1
        if backslashes % 2 == 0:
            text = text[:match.start()]
    return text + '"'


def repair_json(text: str) -> str:
    """
    Turn a truncated JSON document into parseable JSON.

    Handles an open trailing string literal (value strings are closed, key
    strings are dropped), a dangling key or colon, a trailing comma, partial
    ``true``/``false``/``null`` and unfinished numbers, then balances open
    objects and arrays. Text after the top-level value closes is discarded.

    Args:
        text: Accumulated (possibly truncated) JSON text

    Returns:
        Repaired JSON text, or "" when no JSON container was found
    """
    text = strip_code_fences(text)
    start = _find_json_start(text)
    if start is None:
        return ""
    text = text[start:]

    stack: List[str] = []
    in_string = False
    escape = False
    string_start = 0
    string_is_key = False
    expect_key = False
    pending_key_start: Optional[int] = None

    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                if string_is_key:
                    pending_key_start = string_start
            continue

        if ch == '"':
            in_string = True
            string_start = i
            string_is_key = bool(stack) and stack[-1] == "{" and expect_key
            expect_key = False
        elif ch in "{[":
            stack.append(ch)
            expect_key = ch == "{"
        elif ch in "}]":
            if stack:
                stack.pop()
            expect_key = False
            if not stack:
                return _remove_trailing_commas(text[:i + 1])
        elif ch == ",":
            expect_key = bool(stack) and stack[-1] == "{"
        elif ch == ":":
            expect_key = False
            pending_key_start = None

    repaired = text
    if in_string:
        if string_is_key:
            repaired = text[:string_start]
        else:
            repaired = _close_open_string(text, escape)
    elif pending_key_start is not None:
        repaired = text[:pending_key_start]

    repaired = _trim_dangling(repaired)
    closers = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    return _remove_trailing_commas(repaired + closers)


def _remove_trailing_commas(text: str) -> str:
    """Drop commas directly before a closing bracket, outside strings."""
    out: List[str] = []
    in_string = False
    escape = False
    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            out.append(ch)
            continue
        if ch == '"':
            in_string = True
        elif ch in "}]":
            k = len(out) - 1
            while k >= 0 and out[k] in _WS:
                k -= 1
            if k >= 0 and out[k] == ",":
                del out[k]
        out.append(ch)
    return "".join(out)


def _loads_forgiving(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return json.loads(_remove_trailing_commas(text))


def _validated(key: str, value: Any) -> bool:
    try:
        PartialResponse.model_validate({key: value})
    except ValidationError:
        logger.debug(f"Dropping field {key!r} with unexpected value type {type(value).__name__}")
        return False
    return True


def extract_fields(text: str, include_partial_arrays: bool = True) -> Dict[str, Any]:
    """
    Extract the known top-level fields that are safe to render.

    Args:
        text: Accumulated response text
        include_partial_arrays: Expose the closed elements of a still-open
            top-level array

    Returns:
        Mapping of wire field name to parsed value
    """
    known = set(PartialResponse.wire_fields())
    cleaned = strip_code_fences(text or "")
    fields: Dict[str, Any] = {}

    for span in scan_top_level_fields(cleaned):
        if span.key not in known:
            continue
        try:
            if span.closed:
                value = _loads_forgiving(cleaned[span.start:span.end])
            elif include_partial_arrays and cleaned[span.start] == "[":
                if span.complete_items == 0:
                    continue
                repaired = json.loads(repair_json(cleaned[span.start:]))
                value = repaired[:span.complete_items]
            else:
                continue
        except ValueError as e:
            logger.debug(f"Field {span.key!r} not parseable yet: {e}")
            continue
        if value is not None and _validated(span.key, value):
            fields[span.key] = value
    return fields


SUPPLEMENT_TITLE_WORDS = ("magnesium", "melatonin", "vitamin", "supplement")
BUY_TITLE_PREFIX = re.compile(r"^(Where to find |Buy |Get )", re.IGNORECASE)


def add_pantry_options(items: List[Any]) -> List[Any]:
    """
    Pair every supplement ``buy`` item with an ``already_have`` option.

    The option is inserted right before its buy item unless the list
    already offers one for that product. Returns a new list.
    """
    result = list(items)
    for buy in [item for item in items if _is_supplement_buy(item)]:
        product = buy.get("productName") or BUY_TITLE_PREFIX.sub("", buy.get("title") or "").strip()
        has_option = any(
            isinstance(item, dict)
            and item.get("type") == "already_have"
            and (item.get("productName") == product or product in (item.get("title") or ""))
            for item in result
        )
        if has_option:
            continue
        dosage = buy.get("dosage")
        result.insert(result.index(buy), {
            "type": "already_have",
            "title": "I already have",
            "description": "Track in pantry",
            "productName": product,
            "suggestedNotes": f"{dosage}, {buy.get('timing') or 'as directed'}" if dosage else "",
            "contextMessage": "Great! Tracking this helps me personalize your wellness routines",
            "dosage": dosage,
            "timing": buy.get("timing"),
        })
    return result


def _is_supplement_buy(item: Any) -> bool:
    if not isinstance(item, dict) or item.get("type") != "buy":
        return False
    title = (item.get("title") or "").lower()
    return bool(item.get("productName")) or any(word in title for word in SUPPLEMENT_TITLE_WORDS)


SUPPLEMENT_MENTION = re.compile(r"magnesium|vitamin|melatonin|supplement|before bed|dosage|mg", re.IGNORECASE)
MAGNESIUM_MENTION = re.compile(r"magnesium\s*(?:glycinate)?", re.IGNORECASE)
DOSAGE_MENTION = re.compile(r"(\d+[-–]\d+|\d+)\s*mg", re.IGNORECASE)
TIMING_MENTION = re.compile(r"before bed|minutes before|at bedtime", re.IGNORECASE)


def supplement_items_from_text(text: str) -> List[Dict[str, Any]]:
    """Actionable items for a prose reply that recommends magnesium."""
    if not SUPPLEMENT_MENTION.search(text) or not MAGNESIUM_MENTION.search(text):
        return []

    product = "Magnesium Glycinate"
    dosage_match = DOSAGE_MENTION.search(text)
    dosage = dosage_match.group(0) if dosage_match else "200-400mg"
    timing = "30 minutes before bed" if TIMING_MENTION.search(text) else "before bed"
    return [{
        "type": "supplement_choice",
        "title": f"Consider {product}",
        "description": "Helps with sleep quality and muscle relaxation",
        "productName": product,
        "dosage": dosage,
        "timing": timing,
        "searchQuery": "magnesium+glycinate",
        "suggestedNotes": f"{dosage}, {timing}",
    }]


def merge_fields(previous: PartialResponse, fields: Dict[str, Any]) -> PartialResponse:
    """
    Lay newly extracted fields over the previous snapshot.

    Fields missing from ``fields`` are kept, and a list never shrinks.
    Supplement purchase items gain their ``already_have`` option.
    """
    merged = previous.present_fields()
    for key, value in fields.items():
        if value is None:
            continue
        if key == "actionableItems" and isinstance(value, list):
            value = add_pantry_options(value)
        old = merged.get(key)
        if isinstance(old, list) and isinstance(value, list) and len(value) < len(old):
            continue
        merged[key] = value
    return PartialResponse.model_validate(merged)


def merge_snapshot(
    previous: PartialResponse,
    text: str,
    include_partial_arrays: bool = True
) -> PartialResponse:
    """Pure ``(previous snapshot, accumulated text) -> new snapshot`` step."""
    return merge_fields(previous, extract_fields(text, include_partial_arrays))


class IncrementalResponseParser:
    """Turns a growing response buffer into the latest renderable snapshot."""

    def __init__(self, include_partial_arrays: bool = True):
        """
        Initialize parser.

        Args:
            include_partial_arrays: Expose closed elements of open arrays
                (questions, actionableItems) before the array itself closes
        """
        self.include_partial_arrays = include_partial_arrays
        self.snapshot = PartialResponse()

    def feed(self, accumulated_text: str) -> PartialResponse:
        """
        Parse the whole accumulated text so far.

        Args:
            accumulated_text: Every delta of the turn concatenated

        Returns:
            The merged snapshot; the previous one when nothing is parseable
        """
        try:
            self.snapshot = merge_snapshot(
                self.snapshot,
                accumulated_text or "",
                self.include_partial_arrays
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"Partial response could not be parsed, keeping previous snapshot: {e}")
        return self.snapshot

    def finalize(self, text: str) -> PartialResponse:
        """
        Parse the complete response content.

        Replies that are not a JSON object and hold no closed known field
        become the greeting, with a supplement item when the prose
        recommends magnesium.
        """
        cleaned = strip_code_fences(text or "").strip()
        start = _find_json_start(cleaned, "{")

        parsed = None
        if start is not None:
            try:
                parsed = json.loads(cleaned[start:])
            except ValueError:
                parsed = None

        if isinstance(parsed, dict):
            known = set(PartialResponse.wire_fields())
            fields = {
                key: value for key, value in parsed.items()
                if key in known and value is not None and _validated(key, value)
            }
            self.snapshot = merge_fields(self.snapshot, fields)
            return self.snapshot

        if start is not None and extract_fields(cleaned, self.include_partial_arrays):
            logger.warning("Final response is not valid JSON, keeping closed fields only")
            return self.feed(cleaned)

        if cleaned:
            logger.warning("Assistant returned plain text instead of JSON")
            fallback: Dict[str, Any] = {"greeting": cleaned}
            items = supplement_items_from_text(cleaned)
            if items:
                fallback["actionableItems"] = items
            self.snapshot = merge_fields(self.snapshot, fallback)
        return self.snapshot

    def reset(self):
        """Start a new turn."""
        self.snapshot = PartialResponse()
