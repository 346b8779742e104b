"""
Web Search Tool
===============

Lets the assistant look up current information through the Tavily search
API.

Tavily API Notes:
- Uses httpx for async HTTP requests
- Authenticated with a bearer API key (TAVILY_API_KEY)
- The JSON response is handed to the assistant unmodified, it already
  contains an answer summary plus titled, scored results with URLs

Failures are returned as error payloads rather than raised, and nothing is
retried: the assistant sees the error and can say so in its answer.
"""

import httpx

from writebot.tools import AssistantTool, ToolResult
from writebot.utils.config import TavilyConfig
from writebot.utils.logger import Logger

logger = Logger("WebSearch")

TAVILY_SEARCH_URL = "https://api.tavily.com/search"

WEB_SEARCH_PARAMETERS = {
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "description": "The search query to find information about"
        }
    },
    "required": ["query"]
}


async def search_web(
    query: str,
    config: TavilyConfig,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = 30.0
) -> ToolResult:
    """
    Run one Tavily search.

    Args:
        query: What to search for
        config: Tavily credential and search options
        transport: Optional httpx transport (used by tests)
        timeout: Request timeout in seconds

    Returns:
        ToolResult whose data is the provider's raw JSON text
    """
    if not config.api_key:
        return ToolResult(
            success=False,
            error="Web search is not available. API key not configured."
        )

    logger.info(f'Performing web search for: "{query}"')

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {config.api_key}"
    }
    body = {
        "query": query,
        "search_depth": config.search_depth,
        "max_results": config.max_results,
        "include_answer": True,
        "include_raw_content": False
    }

    try:
        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            response = await client.post(TAVILY_SEARCH_URL, headers=headers, json=body)
    except httpx.HTTPError as e:
        logger.error(f'An exception occurred during web search for "{query}"', e)
        return ToolResult(
            success=False,
            error="An exception occurred during the search.",
            extra={"message": str(e) or type(e).__name__}
        )

    if response.is_error:
        logger.error(f'Tavily search failed for query "{query}": {response.status_code}')
        return ToolResult(
            success=False,
            error=f"Search failed with status: {response.status_code}",
            extra={"details": response.text}
        )

    logger.info(f'Tavily search successful for query "{query}"')
    return ToolResult(success=True, data=response.text)


def create_web_search_tool(
    config: TavilyConfig,
    transport: httpx.AsyncBaseTransport | None = None
) -> AssistantTool:
    """Build the `web_search` tool bound to a Tavily configuration."""

    async def _web_search(params: dict) -> ToolResult:
        query = params.get("query")
        if not query or not isinstance(query, str):
            return ToolResult(success=False, error="A search query is required")
        return await search_web(query, config, transport=transport)

    return AssistantTool(
        name="web_search",
        description=(
            "Search the web for current information, news, facts, "
            "or research on any topic"
        ),
        parameters=WEB_SEARCH_PARAMETERS,
        execute=_web_search
    )
