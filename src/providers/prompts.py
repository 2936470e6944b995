"""Prompt templates shared by every chat-model provider."""

from __future__ import annotations

from src.models.question_models import GenerationRequest, QuestionPayload

CATEGORIES = [
    "Geography",
    "History",
    "Science",
    "Culture",
    "Sports",
    "Nature",
    "Technology",
    "Animals",
    "Riddles",
]

AGE_GROUPS = {
    "children": "children (ages 6-12, simple questions)",
    "youth": "youth (ages 13-17, medium difficulty)",
    "adults": "adults (challenging questions)",
}


def generation_system_prompt(request: GenerationRequest) -> str:
    if request.category:
        category_rule = f'Every question must be about the category "{request.category}".'
    else:
        category_rule = f"Cover a mix of categories: {', '.join(CATEGORIES)}."
    if request.age_group:
        level_rule = f"Every question must suit {AGE_GROUPS.get(request.age_group, request.age_group)}."
    else:
        level_rule = "Mix the age groups: children, youth and adults."

    return f"""You are an expert quiz author. Write {request.amount} multiple-choice questions in both Swedish and English for a {request.target_audience} audience.

Rules:
- Exactly 4 answer options per question and exactly one correct answer
- A short explanation of the correct answer
- {category_rule}
- {level_rule}
- Clear, unambiguous wording; no controversial or offensive topics
- Perfect spelling and grammar in both languages

Reply ONLY with valid JSON in this exact shape:
{{"questions": [{{"categories": ["Geography"], "ageGroups": ["adults"], "correctOption": 0,
  "languages": {{"sv": {{"text": "...", "options": ["...", "...", "...", "..."], "explanation": "..."}},
                "en": {{"text": "...", "options": ["...", "...", "...", "..."], "explanation": "..."}}}}}}]}}

correctOption is 0-indexed. ageGroups entries must be children, youth or adults."""


def generation_user_prompt(request: GenerationRequest) -> str:
    return f"Generate {request.amount} quiz questions in both Swedish and English. Return only valid JSON."


VALIDATION_SYSTEM_PROMPT = """You are a quiz fact-checker. Check that the marked answer is correct and that no other option could also be correct.

Check carefully:
1. Is the marked answer actually correct?
2. Could any other option also be right?
3. Is any option ambiguous or wrong?
4. Does the explanation match the correct answer?
5. Are spelling and grammar flawless?

Reply ONLY with valid JSON (no markdown, no comments):
{"valid": true, "issues": ["problems, if any"], "suggestedCorrectOption": 0, "reasoning": "why"}
Leave out suggestedCorrectOption unless the marked answer is wrong."""


def format_question(question: QuestionPayload) -> str:
    lines = [f"**Question:** {question.question}", "", "**Options:**"]
    for index, option in enumerate(question.options, start=1):
        lines.append(f"{index}. {option}")
    if question.correct_option is not None and 0 <= question.correct_option < len(question.options):
        marked = question.options[question.correct_option]
        lines += ["", f"**Marked correct answer:** option {question.correct_option + 1} ({marked})"]
    if question.explanation:
        lines += ["", f"**Explanation:** {question.explanation}"]
    return "\n".join(lines)


def validation_user_prompt(question: QuestionPayload) -> str:
    return f"Validate this quiz question:\n\n{format_question(question)}\n\nIs the marked answer correct?"


CATEGORIZATION_SYSTEM_PROMPT = f"""You classify quiz questions.

Pick one or more age groups from: children, youth, adults.
Pick one or more categories from: {', '.join(CATEGORIES)}.

Reply ONLY with valid JSON:
{{"ageGroups": ["adults"], "categories": ["History"], "reasoning": "short motivation"}}"""


def categorization_user_prompt(question: QuestionPayload) -> str:
    return f"Classify this quiz question:\n\n{format_question(question)}"


EMOJI_SYSTEM_PROMPT = """You illustrate quiz questions with emojis.
Reply with 1 to 3 emojis that capture the question's subject. No words, no punctuation, nothing else."""


def emoji_user_prompt(question: QuestionPayload) -> str:
    return f"Question: {question.question}\nCorrect answer: " + (
        question.options[question.correct_option]
        if question.correct_option is not None and 0 <= question.correct_option < len(question.options)
        else "unknown"
    )
