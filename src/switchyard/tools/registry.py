"""Unified tool registry."""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel, ValidationError
from republic import Tool, tool_from_model

from switchyard.errors import ToolExecutionError


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    """Shorten text to width characters, cutting in the middle of words if needed."""
    if len(text) <= width:
        return text

    available = width - len(placeholder)
    if available <= 0:
        return placeholder

    return text[:available] + placeholder


class ToolProvider(Protocol):
    async def invoke(self, name: str, arguments: dict[str, Any]) -> Any:
        """Run one tool by name; raise `ToolExecutionError` or `KeyError` on failure."""
        ...


@dataclass(frozen=True)
class ToolDescriptor:
    """Tool metadata, input schema and runtime handle."""

    name: str
    short_description: str
    input_model: type[BaseModel]
    handler: Callable[[Any], Any]
    tool: Tool
    source: str = "builtin"


class ToolRegistry:
    """Registry of tools the handlers may request mid-generation."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(
        self,
        name: str,
        *,
        input_model: type[BaseModel],
        handler: Callable[[Any], Any],
        description: str,
        source: str = "builtin",
    ) -> ToolDescriptor:
        descriptor = ToolDescriptor(
            name=name,
            short_description=description,
            input_model=input_model,
            handler=handler,
            tool=tool_from_model(input_model, handler, name=self.to_model_name(name), description=description),
            source=source,
        )
        self._tools[name] = descriptor
        return descriptor

    def resolve(self, name: str) -> ToolDescriptor | None:
        descriptor = self._tools.get(name)
        if descriptor is not None:
            return descriptor
        for candidate in self._tools.values():
            if self.to_model_name(candidate.name) == name:
                return candidate
        return None

    def descriptors(self) -> list[ToolDescriptor]:
        return sorted(self._tools.values(), key=lambda item: item.name)

    @staticmethod
    def to_model_name(name: str) -> str:
        return name.replace(".", "_")

    def model_tools(self, names: Iterable[str] | None = None) -> list[Tool]:
        if names is None:
            return [descriptor.tool for descriptor in self.descriptors()]

        tools: list[Tool] = []
        seen_names: set[str] = set()
        for name in names:
            descriptor = self.resolve(name)
            if descriptor is None:
                logger.warning("tool.registry.missing name={}", name)
                continue
            if descriptor.tool.name in seen_names:
                continue
            seen_names.add(descriptor.tool.name)
            tools.append(descriptor.tool)
        return tools

    def _log_tool_call(self, name: str, kwargs: dict[str, Any]) -> None:
        params: list[str] = []
        for key, value in kwargs.items():
            try:
                rendered = json.dumps(value, ensure_ascii=False)
            except TypeError:
                rendered = repr(value)
            params.append(f"{key}={_shorten_text(rendered)}")
        logger.info("tool.call.start name={} {{ {} }}", name, ", ".join(params))

    async def invoke(self, name: str, arguments: dict[str, Any]) -> Any:
        descriptor = self.resolve(name)
        if descriptor is None:
            raise KeyError(name)

        try:
            params = descriptor.input_model.model_validate(arguments)
        except ValidationError as exc:
            raise ToolExecutionError(f"invalid arguments for {descriptor.name}: {exc.error_count()} error(s)") from exc

        self._log_tool_call(descriptor.name, arguments)
        start = time.monotonic()
        try:
            if inspect.iscoroutinefunction(descriptor.handler):
                result = await descriptor.handler(params)
            else:
                result = await asyncio.to_thread(descriptor.handler, params)
                if inspect.isawaitable(result):
                    result = await result
        except ToolExecutionError:
            logger.warning("tool.call.error name={}", descriptor.name)
            raise
        except Exception as exc:
            logger.exception("tool.call.error name={}", descriptor.name)
            raise ToolExecutionError(f"{descriptor.name} failed: {exc!s}") from exc
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", descriptor.name, duration * 1000)

        if isinstance(result, BaseModel):
            return result.model_dump(mode="json")
        return result
