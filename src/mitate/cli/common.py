"""Shared CLI helpers: service lifecycle, error exit, JSON output, time parsing."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from typing import Any

import typer
from pydantic import BaseModel

from mitate.errors import MitateError
from mitate.service import SettlementService


def _plain(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _plain(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    return obj


def echo_json(obj: Any) -> None:
    typer.echo(json.dumps(_plain(obj), indent=2, ensure_ascii=False))


@contextmanager
def open_service(ctx: typer.Context) -> Iterator[SettlementService]:
    """Open the service for one command; MitateError exits 1 with its message."""
    service = SettlementService(ctx.obj["settings"])
    try:
        with service:
            yield service
    except MitateError as e:
        typer.echo(f"Error [{e.code}]: {e.message}", err=True)
        raise typer.Exit(1) from None


def parse_time_ms(value: str) -> int:
    """Milliseconds since epoch, or an ISO-8601 datetime (naive means UTC)."""
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise typer.BadParameter(f"Not a timestamp: {value}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def run_async(service: SettlementService, coro: Any) -> Any:
    """Run one coroutine, closing the service's RPC client on the same loop."""

    async def runner() -> Any:
        try:
            return await coro
        finally:
            await service.aclose()

    return asyncio.run(runner())
