import pytest
from pydantic import BaseModel

from switchyard.errors import ToolExecutionError
from switchyard.handlers import LITERATURE_TOOL
from switchyard.tools import LiteratureSearchInput, LiteratureSearchResult, ToolRegistry, register_literature_tool


class AddInput(BaseModel):
    a: int
    b: int


@pytest.mark.asyncio
async def test_registry_logs_once_per_invoke(monkeypatch) -> None:
    logs: list[str] = []

    def _capture(message: str, *args: object) -> None:
        logs.append(message)

    monkeypatch.setattr("switchyard.tools.registry.logger.info", _capture)
    monkeypatch.setattr("switchyard.tools.registry.logger.exception", _capture)

    registry = ToolRegistry()
    registry.register("math.add", input_model=AddInput, handler=lambda params: params.a + params.b, description="add")

    result = await registry.invoke("math.add", {"a": 1, "b": 2})
    assert result == 3
    assert logs.count("tool.call.start name={} {{ {} }}") == 1
    assert logs.count("tool.call.end name={} duration={:.3f}ms") == 1


@pytest.mark.asyncio
async def test_registry_resolves_model_names_and_dumps_models() -> None:
    registry = ToolRegistry()

    async def search(params: LiteratureSearchInput) -> LiteratureSearchResult:
        return LiteratureSearchResult(query=params.query)

    registry.register("lit.search", input_model=LiteratureSearchInput, handler=search, description="search")

    assert registry.resolve("lit_search") is not None
    assert await registry.invoke("lit_search", {"query": "DBT"}) == {"query": "DBT", "records": []}
    assert [tool.name for tool in registry.model_tools(["lit.search", "lit_search", "missing"])] == ["lit_search"]


@pytest.mark.asyncio
async def test_registry_error_handling() -> None:
    registry = ToolRegistry()

    def explode(params: AddInput) -> int:
        raise ValueError("boom")

    registry.register("math.explode", input_model=AddInput, handler=explode, description="explode")

    with pytest.raises(KeyError):
        await registry.invoke("math.unknown", {})
    with pytest.raises(ToolExecutionError, match="invalid arguments"):
        await registry.invoke("math.explode", {"a": "x"})
    with pytest.raises(ToolExecutionError, match="boom"):
        await registry.invoke("math.explode", {"a": 1, "b": 2})


def test_literature_tool_is_registered_for_provider() -> None:
    registry = ToolRegistry()
    descriptor = register_literature_tool(registry, lambda params: LiteratureSearchResult(query=params.query))

    assert descriptor.name == LITERATURE_TOOL
    assert descriptor.source == "provider"
    assert [tool.description for tool in registry.model_tools([LITERATURE_TOOL])] == [
        "Search scientific literature and return matching records"
    ]
