"""Short labels derived from prompt text."""

import re

SUMMARY_LENGTH = 80
TITLE_LENGTH = 32


def summarize_prompt(prompt: str | None) -> str:
    """Collapse whitespace and cut to SUMMARY_LENGTH, with an ellipsis if cut."""
    if not prompt:
        return "Awaiting prompt"
    collapsed = re.sub(r"\s+", " ", prompt.strip())
    snippet = collapsed[:SUMMARY_LENGTH]
    return snippet + ("…" if len(collapsed) > SUMMARY_LENGTH else "")


def title_for_prompt(prompt: str | None) -> str:
    if not prompt:
        return "New Session"
    return prompt.strip()[:TITLE_LENGTH] or "Prompt"


def fork_title(title: str | None) -> str:
    return f"{title} (fork)" if title else "Fork"
