"""Prompts package."""

from statement_ledger.prompts.statement import SYSTEM_PROMPT, get_extraction_prompt, wrap_statement_text

__all__ = [
    "SYSTEM_PROMPT",
    "get_extraction_prompt",
    "wrap_statement_text",
]
