"""Ledger connectivity - JSON-RPC over httpx and the websocket subscription stream."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
import websockets

from mitate.errors import LedgerError

log = structlog.get_logger(__name__)


class LedgerRpc:
    """Async JSON-RPC client (server_info, ledger, tx)."""

    def __init__(self, url: str, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> LedgerRpc:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def request(self, method: str, **params: Any) -> dict[str, Any]:
        """POST one JSON-RPC call; transport and ledger errors become LedgerError."""
        try:
            resp = await self._client.post(self.url, json={"method": method, "params": [params]})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerError(f"{method} failed: {e}") from e
        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, dict):
            raise LedgerError(f"{method} returned no result")
        if result.get("status") == "error":
            raise LedgerError(f"{method} failed: {result.get('error_message') or result.get('error')}")
        return result

    async def server_info(self) -> dict[str, Any]:
        result = await self.request("server_info")
        return result.get("info", {})

    async def current_ledger_index(self) -> int:
        """Latest validated ledger index."""
        result = await self.request("ledger", ledger_index="validated")
        index = result.get("ledger_index") or (result.get("ledger") or {}).get("ledger_index")
        if index is None:
            raise LedgerError("ledger response carried no ledger_index")
        return int(index)

    async def get_ledger(self, ledger_index: int) -> dict[str, Any]:
        """Ledger header with expanded transactions (each carrying its metadata)."""
        result = await self.request("ledger", ledger_index=ledger_index, transactions=True, expand=True)
        ledger = result.get("ledger")
        if not isinstance(ledger, dict):
            raise LedgerError(f"ledger {ledger_index} not available")
        return ledger

    async def get_tx(self, tx_hash: str) -> dict[str, Any]:
        return await self.request("tx", transaction=tx_hash)

    async def tx_sequence(self, tx_hash: str) -> int:
        """Account sequence (or ticket) a transaction consumed; escrows are keyed by it."""
        result = await self.get_tx(tx_hash)
        tx = result.get("tx_json") if isinstance(result.get("tx_json"), dict) else result
        sequence = tx.get("Sequence") or tx.get("TicketSequence")
        if not sequence:
            raise LedgerError(f"transaction {tx_hash} has no sequence")
        return int(sequence)


class LedgerStream:
    """Websocket subscription to account transactions and closed ledgers.

    async with LedgerStream(url, accounts) as stream:
        stream.ledger_index  # current ledger at subscribe time
        async for msg in stream: ...
    """

    def __init__(self, url: str, accounts: list[str]) -> None:
        self.url = url
        self.accounts = [a for a in accounts if a]
        self.ledger_index: int | None = None
        self._ws = None
        self._next_id = 0

    def _subscription(self, command: str) -> dict[str, Any]:
        self._next_id += 1
        msg: dict[str, Any] = {"id": self._next_id, "command": command, "streams": ["ledger"]}
        if self.accounts:
            msg["accounts"] = self.accounts
        return msg

    async def __aenter__(self) -> LedgerStream:
        self._ws = await websockets.connect(self.url, ping_interval=20, ping_timeout=20, close_timeout=5)
        request = self._subscription("subscribe")
        await self._ws.send(json.dumps(request))
        while True:
            msg = _parse(await self._ws.recv())
            if msg is None or msg.get("id") != request["id"]:
                continue
            if msg.get("status") != "success":
                await self._ws.close()
                raise LedgerError(f"subscribe rejected: {msg.get('error_message') or msg.get('error')}")
            index = (msg.get("result") or {}).get("ledger_index")
            self.ledger_index = int(index) if index is not None else None
            break
        log.info("ledger_stream_subscribed", url=self.url, accounts=len(self.accounts), ledger_index=self.ledger_index)
        return self

    async def __aexit__(self, *exc: object) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.send(json.dumps(self._subscription("unsubscribe")))
        except websockets.ConnectionClosed:
            pass
        await ws.close()

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        async for raw in self._ws:
            msg = _parse(raw)
            if msg is not None and msg.get("type") != "response":
                yield msg


def _parse(raw: str | bytes) -> dict[str, Any] | None:
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return msg if isinstance(msg, dict) else None
