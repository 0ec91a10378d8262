"""Default quest definitions, seeded by name."""

from __future__ import annotations

DEFAULT_QUESTS: list[dict] = [
    {
        "name": "Daily Login",
        "description": "Connect your wallet once per day",
        "cadence": "daily",
        "rule": {"type": "event_count", "event_type": "connect_wallet", "target_count": 1},
        "reward_xp": 25,
        "display_order": 1,
        "quest_metadata": {"icon": "login", "category": "daily", "difficulty": "easy"},
    },
    {
        "name": "Claim Faucet",
        "description": "Claim testnet tokens from the faucet",
        "cadence": "daily",
        "rule": {"type": "event_count", "event_type": "claim_faucet", "target_count": 1},
        "reward_xp": 50,
        "display_order": 2,
        "quest_metadata": {"icon": "faucet", "category": "daily", "difficulty": "easy"},
    },
    {
        "name": "Make a Deposit",
        "description": "Deposit funds into any protocol",
        "cadence": "daily",
        "rule": {"type": "event_count", "event_type": "deposit", "target_count": 1},
        "reward_xp": 100,
        "display_order": 3,
        "quest_metadata": {"icon": "deposit", "category": "daily", "difficulty": "medium"},
    },
    {
        "name": "Supply Assets",
        "description": "Supply assets to a lending protocol",
        "cadence": "daily",
        "rule": {"type": "event_count", "event_type": "supply", "target_count": 1},
        "reward_xp": 150,
        "display_order": 4,
        "quest_metadata": {"icon": "supply", "category": "daily", "difficulty": "medium"},
    },
    {
        "name": "Strategy Explorer",
        "description": "Select a yield strategy",
        "cadence": "daily",
        "rule": {"type": "event_count", "event_type": "select_strategy", "target_count": 1},
        "reward_xp": 30,
        "display_order": 5,
        "quest_metadata": {"icon": "strategy", "category": "daily", "difficulty": "easy"},
    },
]
