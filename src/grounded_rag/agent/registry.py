"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from grounded_rag.errors import ToolArgumentsError, UnknownToolError
from grounded_rag.obs.tracing import Timer
from grounded_rag.types import ToolTrace

logger = logging.getLogger(__name__)


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation.

    `handler` receives the validated `args_schema` instance and may be a
    plain function or a coroutine function.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], Any]
    output_schema: type[BaseModel] | None = None
    tags: list[str] = Field(default_factory=list)

    @property
    def input_json_schema(self) -> dict[str, Any]:
        return self.args_schema.model_json_schema()

    @property
    def output_json_schema(self) -> dict[str, Any] | None:
        return self.output_schema.model_json_schema() if self.output_schema else None

    def validate_arguments(self, payload: dict[str, Any]) -> BaseModel:
        try:
            return self.args_schema.model_validate(payload)
        except ValidationError as exc:
            raise ToolArgumentsError(
                f"invalid arguments: {exc.error_count()} validation error(s): "
                + "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
            ) from exc

    async def invoke(self, payload: dict[str, Any]) -> Any:
        data = self.validate_arguments(payload)
        result = self.handler(data)
        if inspect.isawaitable(result):
            result = await result
        if self.output_schema is not None and not isinstance(result, self.output_schema):
            result = self.output_schema.model_validate(result)
        return result

    def to_langchain_tool(self) -> StructuredTool:
        async def _coroutine(**kwargs: Any) -> Any:
            return await self.invoke(kwargs)

        return StructuredTool.from_function(
            name=self.name,
            description=self.description,
            args_schema=self.args_schema,
            coroutine=_coroutine,
        )


class ToolRegistry:
    """Stores tool specs and executes them at a failure-containing boundary.

    An unknown tool name raises. Invalid arguments and handler failures are
    returned as an ``"Error executing tool ..."`` string so the model can
    react to them instead of the whole query aborting.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def get_tool(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def get_all_tools(self) -> list[ToolSpec]:
        return list(self._tools.values())

    async def execute_tool(self, name: str, payload: dict[str, Any]) -> Any:
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(f"Tool not found: {name}")

        with Timer() as timer:
            try:
                output = await spec.invoke(payload)
            except Exception as exc:
                logger.warning("tool_execution_failed", extra={"tool": name, "error": str(exc)})
                output = f"Error executing tool {name}: {exc}"

        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=str(output)[:320],
                    latency_ms=timer.elapsed_ms,
                )
            )
        return output

    def as_langchain_tools(self) -> list[StructuredTool]:
        return [spec.to_langchain_tool() for spec in self._tools.values()]
