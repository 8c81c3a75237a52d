"""Contract ABI utilities for the Frima on-chain service.

ABIs are stored as JSON files in this directory and loaded at runtime. The
marketplace ABI is a fixed external contract: event layouts and the getItem
struct are read from it rather than hard-coded.
"""

import json
from functools import lru_cache
from pathlib import Path

MARKETPLACE_CONTRACT = "FrimaMarketplace"


@lru_cache(maxsize=None)
def _load_abi(contract_name: str) -> tuple[dict, ...]:
    abi_path = Path(__file__).parent / f"{contract_name}.json"

    if not abi_path.exists():
        raise FileNotFoundError(
            f"ABI file not found: {abi_path}\n"
            f"Export the {contract_name} ABI from the contract build output into this directory."
        )

    with open(abi_path) as f:
        return tuple(json.load(f))


def get_contract_abi(contract_name: str = MARKETPLACE_CONTRACT) -> list[dict]:
    """Load contract ABI from package resources.

    Args:
        contract_name: Name of the contract (default: "FrimaMarketplace")

    Returns:
        ABI as list of function/event descriptors

    Raises:
        FileNotFoundError: If ABI file doesn't exist for the specified contract

    Example:
        >>> abi = get_contract_abi()
        >>> contract = w3.eth.contract(address=addr, abi=abi)
    """
    return list(_load_abi(contract_name))


def get_event_abis(contract_name: str = MARKETPLACE_CONTRACT) -> dict[str, dict]:
    """Return the event descriptors of a contract keyed by event name."""
    return {
        entry["name"]: entry
        for entry in get_contract_abi(contract_name)
        if entry.get("type") == "event"
    }
