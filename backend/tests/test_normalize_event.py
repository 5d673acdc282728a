from __future__ import annotations

import pytest
from web3 import Web3

from app.domain import MarketCreated, MarketSettled, SharesPurchased, TokensWithdrawn
from app.models import EventKind
from chain_fakes import BUYER, CREATOR, UNIT, make_log, tx_hash
from indexer.errors import EventDecodeError, EventSourceError
from indexer.normalize import normalize_log


def test_market_created_is_decoded(source):
    """Verify a DTFCreated log becomes a typed MarketCreated event."""
    raw_log = make_log(
        {
            "dtfId": 7,
            "creator": CREATOR.lower(),
            "targetValuation": 100 * UNIT,
            "isTargetHigher": False,
            "yesToken": "0x" + "11" * 20,
            "noToken": None,
        },
        transaction_hash=tx_hash(1),
        block_number=10,
        transaction_index=3,
        log_index=5,
    )

    event = normalize_log(EventKind.MARKET_CREATED, raw_log, source)

    assert isinstance(event, MarketCreated)
    assert event.market_id == 7
    assert event.creator == CREATOR
    assert event.target_valuation == 100 * UNIT
    assert event.is_target_higher is False
    assert event.yes_token == Web3.to_checksum_address("0x" + "11" * 20)
    assert event.no_token is None
    assert event.location.block_number == 10
    assert event.location.transaction_index == 3
    assert event.location.log_index == 5
    assert event.location.transaction_hash == tx_hash(1)


def test_purchase_resolves_buyer_from_transaction(source):
    """Verify the purchasing account comes from the transaction sender."""
    raw_log = make_log(
        {"dtfId": 7, "isYesToken": True, "amount": 10 * UNIT},
        transaction_hash=tx_hash(2),
        block_number=11,
    )
    source.transactions[tx_hash(2)] = {"from": BUYER.lower()}

    event = normalize_log(EventKind.SHARES_PURCHASED, raw_log, source)

    assert isinstance(event, SharesPurchased)
    assert event.buyer == BUYER
    assert event.is_yes is True
    assert event.amount == 10 * UNIT


def test_purchase_without_resolvable_sender_is_discarded(source):
    """Verify a failed transaction lookup surfaces as a source error."""
    raw_log = make_log(
        {"dtfId": 7, "isYesToken": True, "amount": UNIT},
        transaction_hash=tx_hash(3),
        block_number=11,
    )

    with pytest.raises(EventSourceError):
        normalize_log(EventKind.SHARES_PURCHASED, raw_log, source)


def test_withdrawal_resolves_withdrawer(source):
    """Verify TokensWithdrawn logs resolve the withdrawing account."""
    raw_log = make_log({"dtfId": 7}, transaction_hash=tx_hash(4), block_number=14)
    source.transactions[tx_hash(4)] = {"from": BUYER}

    event = normalize_log(EventKind.TOKENS_WITHDRAWN, raw_log, source)

    assert isinstance(event, TokensWithdrawn)
    assert event.withdrawer == BUYER


def test_positional_arguments_and_bytes_hash(source):
    """Verify positional args and raw-bytes transaction hashes are accepted."""
    raw_log = make_log(
        (9, True),
        transaction_hash=bytes.fromhex("ab" * 32),
        block_number=20,
    )

    event = normalize_log(EventKind.MARKET_SETTLED, raw_log, source)

    assert isinstance(event, MarketSettled)
    assert event.market_id == 9
    assert event.yes_won is True
    assert event.location.transaction_hash == "0x" + "ab" * 32


def test_nested_live_envelope(source):
    """Verify metadata nested under ``log`` is read for live deliveries."""
    raw_log = {
        "args": {"dtfId": 3, "yesWon": False},
        "log": {"transactionHash": tx_hash(5), "blockNumber": 42, "transactionIndex": 1},
    }

    event = normalize_log(EventKind.MARKET_SETTLED, raw_log, source)

    assert event.location.block_number == 42
    assert event.location.transaction_index == 1
    assert event.yes_won is False


def test_missing_block_number_falls_back_to_receipt(source):
    """Verify the block number is taken from the receipt when the log lacks it."""
    raw_log = make_log({"dtfId": 3, "yesWon": True}, transaction_hash=tx_hash(6), block_number=None)
    source.receipts[tx_hash(6)] = {"blockNumber": 77, "transactionIndex": 2}

    event = normalize_log(EventKind.MARKET_SETTLED, raw_log, source)

    assert event.location.block_number == 77
    assert event.location.transaction_index == 2


@pytest.mark.parametrize(
    "args",
    [
        {"isYesToken": True, "amount": UNIT},
        {"dtfId": "7", "isYesToken": True, "amount": UNIT},
        {"dtfId": 7, "isYesToken": "yes", "amount": UNIT},
        {"dtfId": 7, "isYesToken": True, "amount": -1},
    ],
)
def test_malformed_arguments_raise_decode_error(source, args):
    """Verify arguments of the wrong shape are rejected."""
    raw_log = make_log(args, transaction_hash=tx_hash(7), block_number=11)
    source.transactions[tx_hash(7)] = {"from": BUYER}

    with pytest.raises(EventDecodeError):
        normalize_log(EventKind.SHARES_PURCHASED, raw_log, source)


def test_missing_transaction_hash_is_rejected(source):
    """Verify a log without a transaction hash cannot be normalized."""
    raw_log = make_log({"dtfId": 1, "yesWon": True}, transaction_hash="", block_number=5)

    with pytest.raises(EventDecodeError):
        normalize_log(EventKind.MARKET_SETTLED, raw_log, source)
