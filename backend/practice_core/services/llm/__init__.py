"""
LLM access for the practice core.

Usage:
    from practice_core.services.llm import get_llm_client

    client = get_llm_client()
    problem = await client.generate_problem("python", Difficulty.EASY, "arrays")
"""

from practice_core.services.llm.client import (
    PracticeLLMClient,
    build_messages,
    get_llm_client,
    parse_json_response,
    reset_llm_client,
)

__all__ = [
    "PracticeLLMClient",
    "build_messages",
    "get_llm_client",
    "parse_json_response",
    "reset_llm_client",
]
