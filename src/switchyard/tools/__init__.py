"""Tool registry and tool declarations."""

from switchyard.tools.literature import LiteratureSearchInput, LiteratureSearchResult, register_literature_tool
from switchyard.tools.registry import ToolDescriptor, ToolProvider, ToolRegistry

__all__ = [
    "LiteratureSearchInput",
    "LiteratureSearchResult",
    "ToolDescriptor",
    "ToolProvider",
    "ToolRegistry",
    "register_literature_tool",
]
