"""
app/services/response_format.py

Turns raw provider text into a validated ``LearningResponse``.

Responsibilities:
  - Parse the JSON object the prompt asks for (tolerating code fences, leading
    prose and alternate key spellings).
  - Fall back to header-based extraction when the reply is markdown instead of JSON.
  - Repair common quiz defects: labelled options (``A) ...``), answers given as a
    letter or index, duplicate options. Unrepairable questions are dropped.
  - Enforce the mode's ``ExpectedShape``; anything missing is a
    ``malformed_response``. Nothing is ever filled in with placeholder text.

Usage:
    started = time.perf_counter()
    ...
    response = format_response(raw_text, request.mode, spec.expected_shape, started_at=started)
"""

import json
import re
import time
from dataclasses import dataclass, field

from pydantic import ValidationError

from app.core.errors import ClassifiedError, ErrorCode
from app.core.logging import get_logger
from app.schemas.learning import LearningMode, LearningResponse, QuizQuestion
from app.services.explain_prompt import ExpectedShape

logger = get_logger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.S)

_SECTION_HEADER = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?(?:\*\*|__)?[ \t]*"
    r"(explanation|overview|summary|step[- ]by[- ]step explanation|examples?|key points|key takeaways"
    r"|line[- ]by[- ]line breakdown|questions|quiz(?: questions)?)"
    r"[ \t]*:?[ \t]*(?:\*\*|__)?[ \t]*:?[ \t]*$",
    re.I | re.M,
)
_EXPLANATION_HEADERS = ("explanation", "overview", "summary", "step")
_EXAMPLE_HEADERS = ("example", "key points", "key takeaways")

_LIST_ITEM = re.compile(r"^[ \t]*(?:\d+[.)]|[-*•]|example\s+\d+\s*[:.)-])[ \t]+(.*)$", re.I)
_QUESTION_START = re.compile(r"^[ \t]*(?:\*\*)?(?:q(?:uestion)?[ \t]*\d+|\d+)[ \t]*[.:)](?:\*\*)?[ \t]*(.*)$", re.I)
_OPTION_LINE = re.compile(r"^[ \t]*(?:[-*•][ \t]+|\(?[A-Da-d][).:][ \t]+)")
_BULLET = re.compile(r"^[ \t]*[-*•][ \t]+")
_ANSWER_LINE = re.compile(r"^[ \t]*(?:\*\*)?(?:correct[ \t]+)?answer(?:\*\*)?[ \t]*[:\-][ \t]*(?:\*\*)?[ \t]*(.*)$", re.I)
_RATIONALE_LINE = re.compile(
    r"^[ \t]*(?:\*\*)?(?:explanation|rationale|why)(?:\*\*)?[ \t]*[:\-][ \t]*(?:\*\*)?[ \t]*(.*)$", re.I
)
_INLINE_LABEL = re.compile(r"^\s*(?:\*\*)?(?:explanation|summary|overview)(?:\*\*)?\s*:\s*(?:\*\*)?\s*", re.I)
_OPTION_LABEL = re.compile(r"^[ \t]*\(?(?:[A-Da-d]|[1-4])[).:][ \t]+")
_LETTERS = "abcd"


@dataclass
class ParsedContent:
    explanation: str = ""
    examples: list[str] = field(default_factory=list)
    questions: list[dict] = field(default_factory=list)


# ── Structured (JSON) path ────────────────────────────────────────────────────


def _load_json_object(raw_text: str) -> dict | None:
    """Find and load the JSON object in a reply, or return None."""
    candidates = [block.strip() for block in _FENCED_BLOCK.findall(raw_text)]
    start, end = raw_text.find("{"), raw_text.rfind("}")
    if start != -1 and end > start:
        candidates.append(raw_text[start : end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate, strict=False)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def _example_to_text(item) -> str:
    if isinstance(item, dict):
        title = _as_text(item.get("title"))
        body = "\n\n".join(
            part for part in (_as_text(item.get(key)) for key in ("content", "description", "code", "text")) if part
        )
        if title and body:
            return f"**{title}**\n\n{body}"
        return title or body
    return _as_text(item)


def _from_structured(data: dict) -> ParsedContent:
    examples = data.get("examples") or data.get("key_points") or []
    questions = data.get("questions") or data.get("quiz") or []
    return ParsedContent(
        explanation=_as_text(data.get("explanation") or data.get("summary")),
        examples=[text for text in map(_example_to_text, examples if isinstance(examples, list) else []) if text],
        questions=[q for q in (questions if isinstance(questions, list) else []) if isinstance(q, dict)],
    )


# ── Heuristic (markdown) path ─────────────────────────────────────────────────


def _split_sections(raw_text: str) -> dict[str, str]:
    """Split on recognised headers. Text before the first header is the preamble."""
    sections: dict[str, list[str]] = {}
    matches = list(_SECTION_HEADER.finditer(raw_text))
    preamble = raw_text[: matches[0].start()] if matches else raw_text
    sections.setdefault("preamble", []).append(preamble)

    for index, match in enumerate(matches):
        name = match.group(1).lower()
        if name.startswith(_EXPLANATION_HEADERS) or name.startswith("line"):
            key = "explanation"
        elif name.startswith(_EXAMPLE_HEADERS):
            key = "examples"
        else:
            key = "questions"
        stop = matches[index + 1].start() if index + 1 < len(matches) else len(raw_text)
        sections.setdefault(key, []).append(raw_text[match.end() : stop])

    return {key: "\n\n".join(part.strip() for part in parts if part.strip()) for key, parts in sections.items()}


def _split_list_items(block: str) -> list[str]:
    items: list[list[str]] = []
    for line in block.splitlines():
        marker = _LIST_ITEM.match(line)
        if marker:
            items.append([marker.group(1)])
        elif items:
            items[-1].append(line)
    if not items:
        return [chunk.strip() for chunk in re.split(r"\n\s*\n", block) if chunk.strip()]
    return ["\n".join(lines).strip() for lines in items if "\n".join(lines).strip()]


def _parse_question_blocks(block: str) -> list[dict]:
    questions: list[dict] = []
    current: dict | None = None
    target = "question"

    for line in block.splitlines():
        if not line.strip():
            continue
        option = _OPTION_LINE.match(line)
        answer = _ANSWER_LINE.match(line)
        rationale = _RATIONALE_LINE.match(line)
        start = _QUESTION_START.match(line)

        if start and (current is None or current["options"]):
            current = {"question": start.group(1), "options": [], "correct_answer": "", "explanation": ""}
            questions.append(current)
            target = "question"
        elif current is None:
            continue
        elif option and not current["correct_answer"]:
            current["options"].append(_BULLET.sub("", line, count=1).strip())
            target = "options"
        elif answer:
            current["correct_answer"] = answer.group(1)
            target = "correct_answer"
        elif rationale:
            current["explanation"] = rationale.group(1)
            target = "explanation"
        elif target in ("question", "explanation"):
            current[target] = f"{current[target]} {line.strip()}".strip()

    return questions


def _from_sections(raw_text: str) -> ParsedContent:
    sections = _split_sections(raw_text)
    explanation = sections.get("explanation") or _INLINE_LABEL.sub("", sections.get("preamble", ""), count=1)
    examples_block = sections.get("examples", "")
    questions_block = sections.get("questions", "")
    return ParsedContent(
        explanation=explanation.strip(),
        examples=_split_list_items(examples_block) if examples_block else [],
        questions=_parse_question_blocks(questions_block) if questions_block else [],
    )


# ── Quiz repair ───────────────────────────────────────────────────────────────


def _normalise_options(raw_options) -> list[str]:
    if isinstance(raw_options, dict):
        options = [_as_text(value) for _, value in sorted(raw_options.items())]
    elif isinstance(raw_options, list):
        options = [_as_text(option) for option in raw_options]
    else:
        return []

    if options and all(_OPTION_LABEL.match(option) for option in options):
        options = [_OPTION_LABEL.sub("", option, count=1) for option in options]

    unique: list[str] = []
    seen: set[str] = set()
    for option in options:
        key = option.strip().casefold()
        if key and key not in seen:
            seen.add(key)
            unique.append(option.strip())
    return unique


def _resolve_answer(raw_answer, options: list[str]) -> str:
    """Map a correct answer given as text, letter, label or index to option text."""
    if isinstance(raw_answer, int) and not isinstance(raw_answer, bool):
        # Numeric options ("1", "2", ...) are matched as text before the index reading.
        as_text = str(raw_answer)
        for option in options:
            if option.casefold() == as_text:
                return option
        return options[raw_answer] if 0 <= raw_answer < len(options) else ""

    answer = _as_text(raw_answer).strip("*").strip()
    if not answer:
        return ""
    if answer in options:
        return answer

    folded = {option.casefold(): option for option in options}
    if answer.casefold() in folded:
        return folded[answer.casefold()]

    label = re.match(r"^\(?([A-Da-d]|[1-4])[).:]?(?:[ \t]+(.*))?$", answer)
    if label:
        text = (label.group(2) or "").strip()
        if text and text.casefold() in folded:
            return folded[text.casefold()]
        token = label.group(1).lower()
        index = _LETTERS.index(token) if token in _LETTERS else int(token) - 1
        if 0 <= index < len(options) and not text:
            return options[index]
    return ""


def repair_question(item: dict) -> QuizQuestion | None:
    """Build a valid ``QuizQuestion`` from a loosely-shaped dict, or None."""
    options = _normalise_options(item.get("options") or item.get("choices"))
    raw_answer = next(
        (item[key] for key in ("correct_answer", "correctAnswer", "answer") if item.get(key) is not None),
        None,
    )
    try:
        return QuizQuestion(
            question=_as_text(item.get("question") or item.get("prompt")),
            options=options,
            correct_answer=_resolve_answer(raw_answer, options),
            explanation=_as_text(item.get("explanation") or item.get("rationale")),
        )
    except ValidationError:
        return None


# ── Entry point ───────────────────────────────────────────────────────────────


def parse_provider_output(raw_text: str) -> tuple[ParsedContent, str]:
    """Parse raw text. Returns the content and which path produced it."""
    data = _load_json_object(raw_text)
    if data is not None:
        return _from_structured(data), "structured"
    return _from_sections(raw_text), "heuristic"


def _malformed(reason: str, mode: LearningMode) -> ClassifiedError:
    logger.warning("provider_output_malformed", mode=mode.value, reason=reason)
    return ClassifiedError(ErrorCode.MALFORMED_RESPONSE, detail=reason)


def format_response(
    raw_text: str,
    mode: LearningMode,
    expected_shape: ExpectedShape,
    *,
    started_at: float,
) -> LearningResponse:
    """Validate provider output against the mode's shape and build the response.

    Args:
        raw_text: The provider's reply.
        mode: The request's learning mode.
        expected_shape: Mandatory fields for the mode (from the prompt builder).
        started_at: ``time.perf_counter()`` value captured when the request was accepted.

    Raises:
        ClassifiedError: ``ai_service/malformed_response`` when a required field
            can't be extracted.
    """
    content, path = parse_provider_output(raw_text)

    if expected_shape.require_explanation and not content.explanation:
        raise _malformed(f"{path}: missing explanation", mode)

    examples = content.examples[: expected_shape.max_examples]
    if len(examples) < expected_shape.min_examples:
        raise _malformed(f"{path}: {len(examples)} examples, need {expected_shape.min_examples}", mode)

    questions: list[QuizQuestion] = []
    if expected_shape.allow_questions:
        questions = [q for q in map(repair_question, content.questions) if q is not None]
        if len(questions) < expected_shape.min_questions:
            raise _malformed(
                f"{path}: {len(questions)}/{len(content.questions)} usable questions, "
                f"need {expected_shape.min_questions}",
                mode,
            )

    try:
        response = LearningResponse(
            explanation=content.explanation,
            examples=examples,
            questions=questions,
            mode=mode,
            processing_time=max(0, round((time.perf_counter() - started_at) * 1000)),
        )
    except ValidationError as exc:
        raise _malformed(f"{path}: {exc.error_count()} validation errors", mode) from exc

    logger.info(
        "response_formatted",
        mode=mode.value,
        parse_path=path,
        examples=len(examples),
        questions=len(questions),
        dropped_questions=len(content.questions) - len(questions) if expected_shape.allow_questions else 0,
        processing_time_ms=response.processing_time,
    )
    return response
