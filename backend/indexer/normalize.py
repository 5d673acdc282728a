from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from web3 import Web3

from app.domain import (
    DomainEvent,
    EventLocation,
    MarketCreated,
    MarketSettled,
    SharesPurchased,
    TokensWithdrawn,
)
from app.models import EventKind

from .abi import EVENT_ARGUMENTS
from .client import EventSource, RawLog
from .errors import EventDecodeError, EventSourceError


def _to_hex(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value))
    text = str(value).strip()
    if not text:
        return None
    return text if text.startswith("0x") else f"0x{text}"


def _envelope(raw_log: RawLog) -> Mapping[str, Any]:
    # Live deliveries can wrap the log metadata one level down.
    nested = raw_log.get("log")
    if isinstance(nested, Mapping) and raw_log.get("transactionHash") is None:
        return nested
    return raw_log


def _arguments(kind: EventKind, raw_log: RawLog, envelope: Mapping[str, Any]) -> Mapping[str, Any]:
    args = raw_log.get("args")
    if args is None:
        args = envelope.get("args")
    if isinstance(args, Mapping):
        return args
    if isinstance(args, Sequence) and not isinstance(args, (str, bytes)):
        names = EVENT_ARGUMENTS[kind]
        if len(args) < len(names):
            raise EventDecodeError(
                f"{kind.value} log carries {len(args)} arguments, expected {len(names)}"
            )
        return dict(zip(names, args))
    raise EventDecodeError(f"{kind.value} log has no decoded arguments")


def _require_int(args: Mapping[str, Any], name: str) -> int:
    value = args.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise EventDecodeError(f"Argument {name!r} must be an integer, got {value!r}")
    if value < 0:
        raise EventDecodeError(f"Argument {name!r} must be non-negative, got {value}")
    return value


def _require_bool(args: Mapping[str, Any], name: str) -> bool:
    value = args.get(name)
    if not isinstance(value, bool):
        raise EventDecodeError(f"Argument {name!r} must be a boolean, got {value!r}")
    return value


def _address(value: Any, name: str) -> str:
    if not value:
        raise EventDecodeError(f"Address {name!r} is missing")
    try:
        return Web3.to_checksum_address(value)
    except (TypeError, ValueError) as exc:
        raise EventDecodeError(f"Address {name!r} is invalid: {value!r}") from exc


def _optional_address(value: Any, name: str) -> str | None:
    return _address(value, name) if value else None


def _locate(envelope: Mapping[str, Any], source: EventSource) -> EventLocation:
    transaction_hash = _to_hex(envelope.get("transactionHash"))
    if not transaction_hash:
        raise EventDecodeError("Log is missing its transaction hash")

    block_number = envelope.get("blockNumber")
    transaction_index = envelope.get("transactionIndex")
    if block_number is None:
        receipt = source.get_transaction_receipt(transaction_hash)
        if not receipt or receipt.get("blockNumber") is None:
            raise EventSourceError(f"No receipt block for transaction {transaction_hash}")
        block_number = receipt["blockNumber"]
        transaction_hash = _to_hex(receipt.get("transactionHash")) or transaction_hash
        if transaction_index is None:
            transaction_index = receipt.get("transactionIndex")

    return EventLocation(
        block_number=int(block_number),
        transaction_hash=transaction_hash,
        transaction_index=int(transaction_index or 0),
        log_index=int(envelope.get("logIndex") or 0),
    )


def resolve_sender(source: EventSource, transaction_hash: str) -> str:
    """Return the account that sent ``transaction_hash``; logs alone do not carry it."""

    transaction = source.get_transaction(transaction_hash)
    sender = transaction.get("from") if transaction else None
    if not sender:
        raise EventSourceError(f"Transaction {transaction_hash} has no sender")
    return _address(sender, "from")


def normalize_log(kind: EventKind, raw_log: RawLog, source: EventSource) -> DomainEvent:
    """Convert a raw contract log into its typed domain event.

    Raises ``EventDecodeError`` for malformed logs and ``EventSourceError``
    when data the log lacks (sender, block) cannot be fetched.
    """

    envelope = _envelope(raw_log)
    args = _arguments(kind, raw_log, envelope)
    market_id = _require_int(args, "dtfId")
    location = _locate(envelope, source)

    if kind is EventKind.MARKET_CREATED:
        return MarketCreated(
            market_id=market_id,
            location=location,
            creator=_address(args.get("creator"), "creator"),
            target_valuation=_require_int(args, "targetValuation"),
            is_target_higher=_require_bool(args, "isTargetHigher"),
            yes_token=_optional_address(args.get("yesToken"), "yesToken"),
            no_token=_optional_address(args.get("noToken"), "noToken"),
        )
    if kind is EventKind.SHARES_PURCHASED:
        is_yes = _require_bool(args, "isYesToken")
        amount = _require_int(args, "amount")
        return SharesPurchased(
            market_id=market_id,
            location=location,
            buyer=resolve_sender(source, location.transaction_hash),
            is_yes=is_yes,
            amount=amount,
        )
    if kind is EventKind.MARKET_SETTLED:
        return MarketSettled(
            market_id=market_id,
            location=location,
            yes_won=_require_bool(args, "yesWon"),
        )
    if kind is EventKind.TOKENS_WITHDRAWN:
        return TokensWithdrawn(
            market_id=market_id,
            location=location,
            withdrawer=resolve_sender(source, location.transaction_hash),
        )
    raise EventDecodeError(f"Unsupported event kind {kind!r}")
