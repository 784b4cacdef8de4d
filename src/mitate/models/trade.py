"""Trade - recorded DEX fill of outcome tokens."""

from pydantic import BaseModel


class Trade(BaseModel):
    id: str
    market_id: str
    offer_tx: str
    taker_gets: str  # drops or token value, as carried by the offer
    taker_pays: str
    ledger_index: int
    executed_at: int  # ms epoch
    memo_json: str | None = None
