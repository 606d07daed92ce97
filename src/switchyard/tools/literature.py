"""Literature search tool declared for the academic handler."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from switchyard.handlers import LITERATURE_TOOL
from switchyard.tools.registry import ToolDescriptor, ToolRegistry


class LiteratureSearchInput(BaseModel):
    """Search peer-reviewed literature."""

    query: str = Field(..., min_length=1, description="Search terms, e.g. 'EMDR veterans PTSD'")
    population: str | None = Field(default=None, description="Target population, e.g. adolescents")
    evidence_type: str | None = Field(default=None, description="meta_analysis, rct, systematic_review or any")
    max_results: int = Field(default=5, ge=1, le=20, description="Maximum number of records")


class LiteratureRecord(BaseModel):
    title: str
    source: str = ""
    year: int | None = None
    identifier: str | None = Field(default=None, description="DOI or PMID")


class LiteratureSearchResult(BaseModel):
    query: str
    records: list[LiteratureRecord] = Field(default_factory=list)


LiteratureSearch = Callable[[LiteratureSearchInput], Awaitable[Any] | Any]


def register_literature_tool(registry: ToolRegistry, search: LiteratureSearch) -> ToolDescriptor:
    """Expose an injected search provider to the academic handler."""

    return registry.register(
        LITERATURE_TOOL,
        input_model=LiteratureSearchInput,
        handler=search,
        description="Search scientific literature and return matching records",
        source="provider",
    )
