"""
System prompts for toolchat.
Centralizes the default assistant instructions.
"""

from __future__ import annotations

from datetime import date

TOKEN_TODAY = "%%TODAY%%"

# Default system prompt, used when a request does not supply its own
DEFAULT_SYSTEM_PROMPT_TEMPLATE = f"""You are a helpful assistant with access to a variety of tools.

Today's date is {TOKEN_TODAY}.

The tools are very powerful, and you can use them to answer the user's question.
So choose the tool that is most relevant to the user's question.

If tools are not available, say you don't know, or tell the user they can add a tool server from the server settings.

You can use multiple tools in a single response and run multiple steps to answer the user's question.
Always respond after using the tools.
Make sure to use the right tool to respond to the user's question.

## Response Format
- Markdown is supported.
- Respond according to the tool's response.
- If you don't know the answer, use the tools to find the answer or say you don't know.
"""


def build_default_system_prompt(today: date | None = None) -> str:
    """Render the default system prompt with today's date (ISO format)."""
    return DEFAULT_SYSTEM_PROMPT_TEMPLATE.replace(TOKEN_TODAY, (today or date.today()).isoformat())


def resolve_system_prompt(override: str | None) -> str:
    """Use the request's prompt when it has content, otherwise the default."""
    if override and override.strip():
        return override
    return build_default_system_prompt()
