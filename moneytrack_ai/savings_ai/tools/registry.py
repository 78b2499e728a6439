"""
Tool registry + executor.
What it does:
- @register(name, description, parameters) records a handler and its schema
- tool_definitions() exposes the registry in OpenAI function-tool format
- ToolExecutor.execute() parses arguments, cleans them to the handler
  signature and runs the handler scoped to the requesting user

Every failure (bad JSON, unknown tool, handler error) becomes a
ToolResult(success=False); execute() never raises, so one bad call
cannot end the conversation.
"""


import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from savings_ai.core.logging import get_logger
from savings_ai.llm.json_parse import extract_json_object
from savings_ai.llm.schemas import ToolResult

log = get_logger("tools.registry")


class ToolError(Exception):
    pass


class ToolArgumentError(ToolError):
    pass


class ToolExecutionError(ToolError):
    pass


@dataclass
class ToolContext:
    store: Any  # FinanceStore-like: read_transactions/read_goals/read_budgets/get_financial_summary
    requester_id: str


@dataclass
class ToolSpec:
    name: str
    fn: Callable[..., Awaitable[Any]]
    description: str
    parameters: dict

    def definition(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


_NO_PARAMS = {"type": "object", "properties": {}, "required": []}

TOOLS: dict[str, ToolSpec] = {}

def register(name: str, description: str, parameters: Optional[dict] = None):
    def deco(fn: Callable[..., Awaitable[Any]]):
        TOOLS[name] = ToolSpec(name, fn, description, parameters or _NO_PARAMS)
        return fn
    return deco

def get_tool(name: str) -> ToolSpec:
    if name not in TOOLS:
        raise KeyError(f"Unknown tool: {name}. Known: {list(TOOLS.keys())}")
    return TOOLS[name]

def tool_definitions() -> list[dict]:
    return [spec.definition() for spec in TOOLS.values()]


def _clean_args_for_tool(fn: Callable[..., Any], args: dict) -> dict:
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return args

    params = [p for p in sig.parameters.values() if p.name != "ctx"]
    if any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params):
        return args
    valid_params = {p.name for p in params}

    clean = {k: v for k, v in args.items() if k in valid_params}
    dropped = set(args) - set(clean)
    if dropped:
        log.warning(f"Dropping invalid tool args for {fn.__name__}: {sorted(dropped)}")

    missing = [
        p.name for p in params
        if p.default is inspect.Parameter.empty
        and p.kind in (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)
        and p.name not in clean
    ]
    if missing:
        raise ToolArgumentError(f"Missing required arguments: {missing}")
    return clean


def parse_tool_arguments(args_json: Optional[str]) -> dict:
    try:
        return extract_json_object(args_json or "")
    except ValueError as e:
        raise ToolArgumentError(f"Invalid JSON arguments: {e}") from e


class ToolExecutor:
    def __init__(self, store: Any):
        self.store = store

    async def execute(self, name: str, args_json: Optional[str], requester_id: str) -> ToolResult:
        try:
            spec = get_tool(name)
        except KeyError:
            log.warning(f"Model requested unknown tool '{name}'")
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        try:
            args = _clean_args_for_tool(spec.fn, parse_tool_arguments(args_json))
            data = await self._run(spec, args, requester_id)
        except ToolError as e:
            log.warning(f"Tool {name} failed: {e}")
            return ToolResult(success=False, error=str(e))
        except Exception as e:
            log.exception(f"Tool {name} crashed")
            return ToolResult(success=False, error=f"Tool {name} failed: {e}")

        return ToolResult(success=True, data=data)

    async def _run(self, spec: ToolSpec, args: dict, requester_id: str) -> Any:
        ctx = ToolContext(store=self.store, requester_id=requester_id)
        try:
            return await spec.fn(ctx, **args)
        except ToolError:
            raise
        except ValidationError as e:
            raise ToolArgumentError(f"Invalid arguments for {spec.name}: {e.errors(include_url=False)}") from e
        except Exception as e:
            raise ToolExecutionError(f"{spec.name} failed: {e}") from e
