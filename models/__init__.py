"""
Models package for fetched content, search results and tool responses.
"""

from .content import (
    ContextResultData,
    ExtractedContent,
    QueryResultData,
    SearchResult,
    StoredResultData,
)
from .tool_response import ToolResponse

__all__ = [
    "ContextResultData",
    "ExtractedContent",
    "QueryResultData",
    "SearchResult",
    "StoredResultData",
    "ToolResponse",
]
