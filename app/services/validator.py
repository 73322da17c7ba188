"""
app/services/validator.py

Input validation for POST /api/explain.

Turns the raw request fields into an immutable ``LearningRequest`` or raises a
``ClassifiedError`` of kind ``validation``. Runs before any prompt is built,
so a rejected request never reaches the provider.

Checks, in order:
  1. Sanitise (NFC, strip control chars, CRLF → LF, collapse blank-line runs) and trim.
  2. Empty → ``empty_input``; more than 2000 code points → ``too_long``.
  3. Mode enum → ``invalid_mode``; optional topic type enum → ``invalid_topic_type``.
  4. Safety screen against ``UNSAFE_PATTERNS`` → ``unsafe_content``.
  5. Topic type inferred from the text when the caller didn't send one.

Pure: no network, no state.
"""

import re
import unicodedata
from datetime import datetime, timezone

from app.core.errors import ClassifiedError, ErrorCode
from app.core.logging import get_logger
from app.schemas.learning import MAX_INPUT_CHARS, LearningMode, LearningRequest, TopicType

logger = get_logger(__name__)

# Control characters except \t and \n. \r is handled by the CRLF pass first.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\u200b\u2028\u2029\ufeff]")
_BLANK_LINE_RUN = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")

# Phrase-level patterns only. Bare words like "kill" or "exploit" are common in
# programming questions ("kill a process", "exploit the cache").
UNSAFE_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "weapons": (
        re.compile(r"\b(how\s+(do\s+i|to|can\s+i)\s+)?(make|build|assemble)\s+(a\s+)?(pipe\s+)?(bomb|explosive|ied)\b", re.I),
        re.compile(r"\bsynthe[sz]i[sz]e\s+(sarin|vx|ricin|nerve\s+agent|mustard\s+gas)\b", re.I),
    ),
    "drugs": (
        re.compile(r"\b(cook|synthe[sz]i[sz]e|make)\s+(meth|methamphetamine|fentanyl)\b", re.I),
    ),
    "self_harm": (
        re.compile(r"\b(how\s+to\s+)?(kill|hurt)\s+myself\b", re.I),
        re.compile(r"\bsuicide\s+(method|methods|instructions)\b", re.I),
    ),
    "minors": (
        re.compile(r"\bchild\s+(porn|pornography|sexual\s+abuse\s+material)\b", re.I),
    ),
    "malware": (
        re.compile(r"\b(write|create|build|code)\s+(a\s+|some\s+)?(working\s+)?(ransomware|keylogger|credential\s+stealer)\b", re.I),
    ),
    "prompt_injection": (
        re.compile(r"\bignore\s+(all\s+)?(the\s+)?(previous|prior|above)\s+instructions\b", re.I),
        re.compile(r"\breveal\s+(your|the)\s+system\s+prompt\b", re.I),
    ),
}

_CODE_FENCE = re.compile(r"```|~~~")
_INDENTED_LINE = re.compile(r"^(?: {4}|\t)\S", re.M)
_SYNTAX_MARKERS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bdef\s+\w+\s*\("),
    re.compile(r"\bfunction\s*\w*\s*\("),
    re.compile(r"=>"),
    re.compile(r"\bclass\s+\w+\s*[:({]"),
    re.compile(r"^\s*#include\s*<", re.M),
    re.compile(r"^\s*(import|from)\s+[\w.]+", re.M),
    re.compile(r"\breturn\b[^.?!]*;?\s*$", re.M),
    re.compile(r"[;{}]\s*$", re.M),
    re.compile(r"\b(console\.log|System\.out|printf|print)\s*\("),
    re.compile(r"\b(let|const|var|int|public|private)\s+\w+\s*[=;(]"),
    re.compile(r"\bfor\s*\(.*;.*;.*\)"),
    re.compile(r"(==|!=|<=|>=|\+=|-=|&&|\|\|)"),
    re.compile(r"</?[a-zA-Z][\w-]*(\s[^>]*)?>"),
)


def sanitize_input(raw: str) -> str:
    """Normalise the raw text without touching its meaning."""
    text = unicodedata.normalize("NFC", raw)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = _BLANK_LINE_RUN.sub("\n\n", text)
    return text.strip()


def find_unsafe_category(text: str) -> str | None:
    """Return the first matching disallowed-content category, or None."""
    for category, patterns in UNSAFE_PATTERNS.items():
        if any(pattern.search(text) for pattern in patterns):
            return category
    return None


def infer_topic_type(text: str) -> TopicType:
    """Guess whether the input is source code or a concept.

    Code fences or an indented block are decisive; otherwise two distinct
    syntax markers are needed, so prose like "what does == mean" stays a concept.
    """
    if _CODE_FENCE.search(text):
        return TopicType.CODE
    if len(_INDENTED_LINE.findall(text)) >= 2:
        return TopicType.CODE
    hits = sum(1 for marker in _SYNTAX_MARKERS if marker.search(text))
    return TopicType.CODE if hits >= 2 else TopicType.CONCEPT


def _parse_mode(raw_mode) -> LearningMode:
    if isinstance(raw_mode, str):
        try:
            return LearningMode(raw_mode.strip().lower())
        except ValueError:
            pass
    raise ClassifiedError(ErrorCode.INVALID_MODE, detail=f"mode={str(raw_mode)[:40]!r}")


def _parse_topic_type(raw_topic_type) -> TopicType | None:
    if raw_topic_type is None or (isinstance(raw_topic_type, str) and not raw_topic_type.strip()):
        return None
    if isinstance(raw_topic_type, str):
        try:
            return TopicType(raw_topic_type.strip().lower())
        except ValueError:
            pass
    raise ClassifiedError(ErrorCode.INVALID_TOPIC_TYPE, detail=f"topic_type={str(raw_topic_type)[:40]!r}")


def validate_request(
    raw_input,
    raw_mode,
    raw_topic_type=None,
    *,
    submitted_at: datetime | None = None,
) -> LearningRequest:
    """Validate and sanitise an explain request.

    Args:
        raw_input: The user's text as received.
        raw_mode: The requested learning mode as received.
        raw_topic_type: Optional "concept" | "code"; inferred when missing.
        submitted_at: Acceptance timestamp. Defaults to now (UTC).

    Returns:
        An immutable ``LearningRequest``.

    Raises:
        ClassifiedError: kind ``validation`` with the code of the first failed check.
    """
    text = sanitize_input(raw_input) if isinstance(raw_input, str) else ""

    if not text:
        raise ClassifiedError(ErrorCode.EMPTY_INPUT)

    # str length is the code point count, so multibyte text isn't penalised.
    if len(text) > MAX_INPUT_CHARS:
        raise ClassifiedError(ErrorCode.TOO_LONG, detail=f"length={len(text)}")

    mode = _parse_mode(raw_mode)
    topic_type = _parse_topic_type(raw_topic_type)

    category = find_unsafe_category(text)
    if category is not None:
        logger.warning("input_rejected_unsafe", category=category, input_length=len(text))
        raise ClassifiedError(ErrorCode.UNSAFE_CONTENT, detail=f"category={category}")

    if topic_type is None:
        topic_type = infer_topic_type(text)

    logger.debug(
        "input_validated",
        mode=mode.value,
        topic_type=topic_type.value,
        input_length=len(text),
    )

    return LearningRequest(
        input=text,
        mode=mode,
        topic_type=topic_type,
        submitted_at=submitted_at or datetime.now(timezone.utc),
    )
