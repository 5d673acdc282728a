"""Contract ABI fragments and event-name mapping for the DTF market contract."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from app.models import EventKind


CONTRACT_EVENT_NAMES: dict[EventKind, str] = {
    EventKind.MARKET_CREATED: "DTFCreated",
    EventKind.SHARES_PURCHASED: "SharesPurchased",
    EventKind.MARKET_SETTLED: "DTFSettled",
    EventKind.TOKENS_WITHDRAWN: "TokensWithdrawn",
}

# Decoded argument names, in emission order, for each contract event.
EVENT_ARGUMENTS: dict[EventKind, tuple[str, ...]] = {
    EventKind.MARKET_CREATED: (
        "dtfId",
        "creator",
        "targetValuation",
        "isTargetHigher",
        "yesToken",
        "noToken",
    ),
    EventKind.SHARES_PURCHASED: ("dtfId", "isYesToken", "amount"),
    EventKind.MARKET_SETTLED: ("dtfId", "yesWon"),
    EventKind.TOKENS_WITHDRAWN: ("dtfId",),
}


def _event(name: str, inputs: list[tuple[str, str, bool]]) -> dict[str, Any]:
    return {
        "anonymous": False,
        "name": name,
        "type": "event",
        "inputs": [
            {"indexed": indexed, "internalType": kind, "name": arg, "type": kind}
            for arg, kind, indexed in inputs
        ],
    }


DTF_MARKET_ABI: list[dict[str, Any]] = [
    _event(
        "DTFCreated",
        [
            ("dtfId", "uint256", True),
            ("creator", "address", True),
            ("targetValuation", "uint256", False),
            ("isTargetHigher", "bool", False),
            ("yesToken", "address", False),
            ("noToken", "address", False),
        ],
    ),
    _event(
        "SharesPurchased",
        [
            ("dtfId", "uint256", True),
            ("isYesToken", "bool", False),
            ("amount", "uint256", False),
        ],
    ),
    _event(
        "DTFSettled",
        [
            ("dtfId", "uint256", True),
            ("yesWon", "bool", False),
        ],
    ),
    _event("TokensWithdrawn", [("dtfId", "uint256", True)]),
    {
        "name": "getSharePrices",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"internalType": "uint256", "name": "dtfId", "type": "uint256"}],
        "outputs": [
            {"internalType": "uint256", "name": "yesPrice", "type": "uint256"},
            {"internalType": "uint256", "name": "noPrice", "type": "uint256"},
        ],
    },
]


def load_abi(path: str | None = None) -> list[dict[str, Any]]:
    """Return the ABI at ``path`` (raw array or Hardhat artifact), else the bundled one."""

    if not path:
        return DTF_MARKET_ABI
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict) and isinstance(payload.get("abi"), list):
        return payload["abi"]
    if isinstance(payload, list):
        return payload
    raise ValueError(f"No ABI array found in {path}")
