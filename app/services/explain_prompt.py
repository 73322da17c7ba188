"""
app/services/explain_prompt.py

Modular Jinja2 prompts for the three learning modes.

Prompt structure:
    ROLE         — patient tutor for learners who are new to the topic
    INPUT        — the sanitised user text (fenced when it is code)
    TASK         — mode-specific instructions (beginner / summary / quiz)
    OUTPUT       — the JSON object the response formatter expects
    STRICT       — optional reminder block used when re-asking after a malformed reply

Rules:
    - The prompt is provider-agnostic plain text; no SDK-specific message types.
    - Every mode asks for the same JSON keys so one parser handles all three.
    - ``ExpectedShape`` is the formatter's checklist for the mode; keep it in
      sync with the TASK wording below.
"""

from dataclasses import dataclass

from jinja2 import Environment, StrictUndefined

from app.core.logging import get_logger
from app.schemas.learning import MAX_EXAMPLES, MAX_OPTIONS, MIN_OPTIONS, LearningMode, LearningRequest, TopicType

logger = get_logger(__name__)

QUIZ_QUESTION_COUNT = 3


@dataclass(frozen=True)
class ExpectedShape:
    """Which fields a mode's answer must contain, and how many."""

    mode: LearningMode
    require_explanation: bool = True
    min_examples: int = 0
    max_examples: int = MAX_EXAMPLES
    min_questions: int = 0
    allow_questions: bool = False


@dataclass(frozen=True)
class PromptSpec:
    instruction_text: str
    expected_shape: ExpectedShape
    strict: bool = False


EXPECTED_SHAPES: dict[LearningMode, ExpectedShape] = {
    LearningMode.BEGINNER: ExpectedShape(mode=LearningMode.BEGINNER, min_examples=1),
    LearningMode.SUMMARY: ExpectedShape(mode=LearningMode.SUMMARY),
    LearningMode.QUIZ: ExpectedShape(mode=LearningMode.QUIZ, min_questions=1, allow_questions=True),
}

_BASE_TEMPLATE = """\
You are a patient, encouraging tutor on an AI learning assistant. Learners paste \
a concept they want to understand or a piece of code they want explained.

## Learner Input ({{ topic_label }})

{% if is_code %}
```
{{ user_input }}
```
{% else %}
{{ user_input }}
{% endif %}

## Task

{% block task %}{% endblock %}

## Output Format

Reply with ONE JSON object and nothing else, using exactly these keys:

{
  "explanation": "markdown text",
  "examples": [{% if max_examples %}"markdown text"{% endif %}],
  "questions": [{% if allow_questions %}{
    "question": "text",
    "options": ["option 1", "option 2", "option 3", "option 4"],
    "correct_answer": "must be copied exactly from options",
    "explanation": "why this answer is correct"
  }{% endif %}]
}
{% if strict %}

## IMPORTANT — previous answer was unusable

Your previous reply could not be parsed. This time:
- Output raw JSON only. No code fences, no text before or after the object.
- Escape newlines inside strings as \\n.
- "explanation" must be a non-empty string.
{% if min_examples %}- "examples" must contain between {{ min_examples }} and {{ max_examples }} strings.
{% endif %}
{% if allow_questions %}- "questions" must contain at least {{ min_questions }} item(s); every item has \
{{ min_options }} or {{ max_options }} distinct options and a "correct_answer" equal to one of them.
{% else %}- "questions" must be an empty list.
{% endif %}
{% endif %}\
"""

_TASK_TEMPLATES: dict[LearningMode, str] = {
    LearningMode.BEGINNER: """\
Explain this for a complete beginner.
1. Start with a one-sentence, jargon-free definition.
2. Walk through the idea step by step, introducing one new term at a time.
{% if is_code %}
3. Give a line-by-line breakdown of the code: what each line does and why it is there.
4. Provide 1 to {{ max_examples }} short examples that vary the code or show it running on sample input.
{% else %}
3. Use an everyday analogy where it helps.
4. Provide 1 to {{ max_examples }} short, concrete examples.
{% endif %}
Leave "questions" empty.""",
    LearningMode.SUMMARY: """\
Write a condensed summary.
1. "explanation" is a short overview (3 to 6 sentences) covering only the essential ideas.
{% if is_code %}
2. Say what the code does overall, its inputs and outputs, and any notable pitfalls.
{% endif %}
{{ "3" if is_code else "2" }}. Put up to {{ max_examples }} key points or takeaways in "examples".
Leave "questions" empty.""",
    LearningMode.QUIZ: """\
Build a short multiple-choice quiz that checks understanding.
1. "explanation" is a brief refresher of the key ideas the quiz covers.
2. Write {{ question_count }} questions{% if is_code %} about what the code does, its output and its edge cases{% endif %}.
3. Each question has {{ min_options }} or {{ max_options }} distinct options, exactly one correct.
4. "correct_answer" repeats the correct option text character for character.
5. Each question's "explanation" says why the answer is right and the others are wrong.
Leave "examples" empty.""",
}

_env = Environment(
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
    autoescape=False,
)

_compiled_templates = {
    mode: _env.from_string(
        _BASE_TEMPLATE.replace("{% block task %}{% endblock %}", task),
    )
    for mode, task in _TASK_TEMPLATES.items()
}


def build_prompt(request: LearningRequest, *, strict: bool = False) -> PromptSpec:
    """Compile the instruction text for a validated request.

    Args:
        request: The validated learning request.
        strict: Add the reminder block used after a malformed reply.

    Returns:
        The provider-agnostic ``PromptSpec`` for this request.
    """
    shape = EXPECTED_SHAPES[request.mode]
    is_code = request.topic_type is TopicType.CODE

    rendered = _compiled_templates[request.mode].render(
        user_input=request.input,
        is_code=is_code,
        topic_label="code" if is_code else "concept",
        strict=strict,
        min_examples=shape.min_examples,
        max_examples=shape.max_examples if request.mode is not LearningMode.QUIZ else 0,
        allow_questions=shape.allow_questions,
        min_questions=shape.min_questions,
        question_count=QUIZ_QUESTION_COUNT,
        min_options=MIN_OPTIONS,
        max_options=MAX_OPTIONS,
    )

    logger.debug(
        "explain_prompt_compiled",
        mode=request.mode.value,
        topic_type=request.topic_type.value,
        prompt_length=len(rendered),
        strict=strict,
    )

    return PromptSpec(instruction_text=rendered, expected_shape=shape, strict=strict)
