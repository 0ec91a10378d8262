"""Default XP rule set.

``max_awards`` caps how many events of a type earn XP per ``window`` for
one user; ``None`` means uncapped.
"""

from __future__ import annotations

from typing import Any

XP_WINDOWS: tuple[str, ...] = ("daily", "weekly")

DEFAULT_XP_RULES: list[dict[str, Any]] = [
    {
        "event_type": "connect_wallet",
        "xp_amount": 10,
        "window": "daily",
        "max_awards": 1,
        "description": "Connect your wallet",
    },
    {
        "event_type": "deposit",
        "xp_amount": 100,
        "window": None,
        "max_awards": None,
        "description": "Deposit funds into a protocol",
    },
    {
        "event_type": "supply",
        "xp_amount": 150,
        "window": None,
        "max_awards": None,
        "description": "Supply assets to a lending market",
    },
    {
        "event_type": "borrow",
        "xp_amount": 100,
        "window": None,
        "max_awards": None,
        "description": "Borrow against supplied collateral",
    },
    {
        "event_type": "swap",
        "xp_amount": 50,
        "window": None,
        "max_awards": None,
        "description": "Swap tokens",
    },
    {
        "event_type": "claim_faucet",
        "xp_amount": 50,
        "window": "daily",
        "max_awards": 1,
        "description": "Claim testnet tokens from the faucet",
    },
    {
        "event_type": "select_strategy",
        "xp_amount": 30,
        "window": "daily",
        "max_awards": 1,
        "description": "Pick a yield strategy",
    },
]
