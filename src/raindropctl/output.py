import json
from enum import Enum
from typing import Any, Awaitable, Optional, TypeVar

import toon_format as toon
from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape

T = TypeVar("T")

err_console = Console(stderr=True)


class OutputFormat(str, Enum):
    json = "json"
    toon = "toon"


def to_plain(data: Any) -> Any:
    """Turn models (and containers of models) into JSON-serializable values."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [to_plain(item) for item in data]
    if isinstance(data, dict):
        return {key: to_plain(value) for key, value in data.items()}
    return data


def render(data: Any, fmt: OutputFormat) -> str:
    dumped = to_plain(data)
    if fmt == OutputFormat.toon:
        return toon.encode(dumped)
    return json.dumps(dumped, indent=2)


async def with_spinner(text: str, awaitable: Awaitable[T], success_text: Optional[str] = None) -> T:
    """
    Show a status spinner on stderr while awaiting. Only drawn on a terminal;
    the result and any exception pass through untouched.
    """
    if not err_console.is_terminal:
        return await awaitable

    with err_console.status(escape(text)):
        try:
            result = await awaitable
        except Exception:
            err_console.print(f"[red]✗[/red] {escape(text)}")
            raise
    err_console.print(f"[green]✓[/green] {escape(success_text or text)}")
    return result
