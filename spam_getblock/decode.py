from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import cbor2

from .harness.errors import DecodeError

LOGGER = logging.getLogger("spam_getblock.decode")


@dataclass(frozen=True)
class DecodedTransaction:
    body: Any
    result: Any
    events: tuple[dict, ...]


@dataclass(frozen=True)
class RoundSummary:
    round: int
    hash: str
    timestamp: datetime | None
    transactions: tuple[DecodedTransaction, ...] = ()
    events: tuple[dict, ...] = ()

    @property
    def num_transactions(self) -> int:
        return len(self.transactions)

    @property
    def num_events(self) -> int:
        return len(self.events)

    def __str__(self) -> str:
        return f"Round: {self.round}, NumTransactions: {self.num_transactions}, Hash: {self.hash}"


def header_hash(header: dict) -> str:
    """SHA-512/256 over the canonical CBOR encoding of a block header."""
    encoded = cbor2.dumps(header, canonical=True)
    return hashlib.new("sha512_256", encoded).hexdigest()


def extract_round(block: dict, transactions: list, events: list) -> RoundSummary:
    header = (block or {}).get("header")
    if not isinstance(header, dict) or "round" not in header:
        raise DecodeError("block has no header round")

    decoded_txs = [_decode_transaction(tx) for tx in transactions]
    decoded_events = []
    for index, raw in enumerate(events):
        try:
            decoded_events.append(_decode_event(raw))
        except (cbor2.CBORDecodeError, KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"failed to unmarshal event {index}", exc) from exc

    timestamp = header.get("timestamp")
    return RoundSummary(
        round=int(header["round"]),
        hash=header_hash(header),
        timestamp=datetime.fromtimestamp(timestamp, tz=timezone.utc) if timestamp else None,
        transactions=tuple(decoded_txs),
        events=tuple(decoded_events),
    )


def summarize_round(block: dict, transactions: list, events: list) -> str:
    return str(extract_round(block, transactions, events))


def _decode_transaction(raw: dict) -> DecodedTransaction:
    # Bodies and results that fail to decode are kept raw.
    body = _loads_or_raw(raw.get("tx"))
    result = _loads_or_raw(raw.get("result"))
    tx_events = []
    for event in raw.get("events") or []:
        try:
            tx_events.append(_decode_event(event))
        except (cbor2.CBORDecodeError, KeyError, TypeError, ValueError):
            LOGGER.debug("skipping undecodable transaction event %r", event)
    return DecodedTransaction(body=body, result=result, events=tuple(tx_events))


def _decode_event(raw: dict) -> dict:
    key = raw["key"]
    value = raw["value"]
    if not isinstance(key, bytes) or not isinstance(value, bytes):
        raise TypeError("event key and value must be bytes")
    return {"key": key, "value": cbor2.loads(value), "tx_hash": raw.get("tx_hash")}


def _loads_or_raw(value: Any) -> Any:
    if not isinstance(value, bytes):
        return value
    try:
        return cbor2.loads(value)
    except cbor2.CBORDecodeError:
        return value


__all__ = ["DecodedTransaction", "RoundSummary", "extract_round", "header_hash", "summarize_round"]
