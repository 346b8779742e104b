"""
Assistant Instructions
======================

Builds the system instructions for the writing assistant.

The same template is used twice:
- once when the assistant is created, with the general writing context
- once per run, so a message can carry its own writing task (Slack
  message metadata `writing_task`) and the current date stays fresh
"""

from datetime import date

ASSISTANT_NAME = "AI Writing Assistant"

DEFAULT_WRITING_CONTEXT = "General writing assistance."

WRITING_ASSISTANT_PROMPT = """You are an expert AI Writing Assistant. Your primary purpose is to be a collaborative writing partner.

**Your Core Capabilities:**
- Content Creation, Improvement, Style Adaptation, Brainstorming, and Writing Coaching.
- **Web Search**: You have the ability to search the web for up-to-date information using the 'web_search' tool.
- **Current Date**: Today's date is {current_date}. Please use this for any time-sensitive queries.

**Crucial Instructions:**
1.  **ALWAYS use the 'web_search' tool when the user asks for current information, news, or facts.** Your internal knowledge is outdated.
2.  When you use the 'web_search' tool, you will receive a JSON object with search results. **You MUST base your response on the information provided in that search result.** Do not rely on your pre-existing knowledge for topics that require current information.
3.  Synthesize the information from the web search to provide a comprehensive and accurate answer. Cite sources if the results include URLs.

**Response Format:**
- Be direct and production-ready.
- Use clear formatting (Slack mrkdwn: *bold*, _italic_, bullet lists).
- Never begin responses with phrases like "Here's the edit:", "Here are the changes:", or similar introductory statements.
- Provide responses directly and professionally without unnecessary preambles.

**Writing Context**: {writing_context}

Your goal is to provide accurate, current, and helpful written content. Failure to use web search for recent topics will result in an incorrect answer."""


def build_instructions(context: str | None = None, today: date | None = None) -> str:
    """
    Render the writing assistant instructions.

    Args:
        context: Optional writing context, e.g. "Writing Task: blog intro"
        today: Date to embed (defaults to today)

    Returns:
        The full instruction text
    """
    today = today or date.today()
    current_date = f"{today:%B} {today.day}, {today.year}"

    return WRITING_ASSISTANT_PROMPT.format(
        current_date=current_date,
        writing_context=context or DEFAULT_WRITING_CONTEXT,
    )


def writing_task_context(writing_task: str | None) -> str | None:
    """Turn a message's writing task into instruction context."""
    if not writing_task:
        return None
    return f"Writing Task: {writing_task}"
