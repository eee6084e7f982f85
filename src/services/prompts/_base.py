"""Base utilities for prompts module.

Contains shared helpers for cleaning model output before it is stored.
"""

_QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"), ("«", "»"))


def strip_markdown_code_blocks(text: str) -> str:
    """Strip a surrounding markdown code fence from AI response text.

    Args:
        text: Raw text that may be wrapped in ``` fences

    Returns:
        Text without the fence
    """
    text = text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def clean_completion(text: str) -> str:
    """Normalize a completion: drop code fences and one pair of wrapping quotes."""
    text = strip_markdown_code_blocks(text or "")
    for opening, closing in _QUOTE_PAIRS:
        if len(text) >= 2 and text.startswith(opening) and text.endswith(closing):
            text = text[1:-1].strip()
            break
    return text
