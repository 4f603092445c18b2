"""
Prompt templates for problem generation and solution review.

Both prompts request a strict JSON object; the client parses the response
and validates it with Pydantic before anything reaches the repository.
"""

from practice_core.enums.practice import Difficulty

# Topics rotated through when a generation job does not name one
DEFAULT_TOPICS: tuple[str, ...] = (
    "arrays",
    "strings",
    "hash maps",
    "recursion",
    "sorting",
    "linked lists",
    "stacks and queues",
    "binary search",
    "trees",
    "dynamic programming",
    "graphs",
)

GENERATION_SYSTEM_PROMPT = """You are a coding instructor creating practice problems.
Your response must be a valid JSON object with this exact structure:
{{
  "title": "problem title",
  "difficulty": "{difficulty}",
  "language": "{language}",
  "problem": "detailed problem description",
  "startingCode": "initial code template with missing parts",
  "solution": "complete solution",
  "hints": ["array of hints"],
  "testCases": ["array of test cases"],
  "concepts": ["short concept tags, e.g. recursion, hashing"]
}}
Do not include any additional text or formatting."""

GENERATION_USER_PROMPT = "Create a {difficulty} level problem in {language} for: {topic}"

REVIEW_SYSTEM_PROMPT = """You are a code reviewer. Compare the user's solution with the
correct solution and the test cases, then provide feedback.
Your response must be a valid JSON object with this exact structure:
{
  "isCorrect": boolean,
  "feedback": "detailed feedback message",
  "hint": "hint for improvement if incorrect",
  "suggestions": ["array of improvement suggestions"]
}
Do not include any additional text or formatting."""

REVIEW_USER_PROMPT = """Language: {language}

Problem:
{description}

Test cases:
{tests}

User Solution:
{code}

Correct Solution:
{solution}"""


def topic_for(index: int) -> str:
    return DEFAULT_TOPICS[index % len(DEFAULT_TOPICS)]


def generation_prompts(language: str, difficulty: Difficulty, topic: str) -> tuple[str, str]:
    """Return (system_prompt, user_prompt) for a problem generation call."""
    system = GENERATION_SYSTEM_PROMPT.format(difficulty=difficulty.value, language=language)
    user = GENERATION_USER_PROMPT.format(
        difficulty=difficulty.value.lower(), language=language, topic=topic
    )
    return system, user
