"""
Asset ledger

A closed set of asset classes with explicit balance and transfer operations:
the native asset, two fungible tokens, the protocol yield token, and
non-fungible collectibles (tracked by `CollectibleRegistry`).

Recipients may register a receiver hook, which runs after a transfer lands.
Hooks model contract recipients and are how re-entry attempts reach the
protocol.
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .errors import InsufficientBalance, InvalidAmount, InvalidAssetClass, NotAssetOwner
from .guard import Snapshottable
from .identity import short

logger = logging.getLogger(__name__)

ESCROW = "sarcophagus:escrow"
TREASURY = "sarcophagus:treasury"


class AssetClass(Enum):
    NATIVE = "native"
    ENERGY = "energy"
    REWARD = "reward"
    YIELD = "yield"
    COLLECTIBLE = "collectible"

    @property
    def is_fungible(self) -> bool:
        return self is not AssetClass.COLLECTIBLE


DEPOSIT_CLASSES = (AssetClass.NATIVE, AssetClass.ENERGY, AssetClass.REWARD)
FUNGIBLE_CLASSES = DEPOSIT_CLASSES + (AssetClass.YIELD,)


def coerce_asset(asset) -> AssetClass:
    if isinstance(asset, AssetClass):
        return asset
    try:
        return AssetClass(asset)
    except ValueError:
        raise InvalidAssetClass(f"Unknown asset class {asset!r}") from None


@dataclass
class TransferEvent:
    """A single asset movement"""
    asset: str
    sender: str
    recipient: str
    amount: int
    memo: str = ""
    collection: Optional[str] = None
    token_id: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


ReceiverHook = Callable[[TransferEvent], None]


class Ledger(Snapshottable):
    """Fungible balances for every account and asset class"""

    _state_fields = ("_balances", "_supply")
    _journal_fields = ("_transfer_history",)

    def __init__(self):
        self._balances: Dict[str, Dict[str, int]] = {}  # asset -> account -> balance
        self._supply: Dict[str, int] = {}
        self._transfer_history: List[TransferEvent] = []
        self._receivers: Dict[str, ReceiverHook] = {}

    def register_receiver(self, account: str, hook: ReceiverHook) -> None:
        self._receivers[account] = hook

    def unregister_receiver(self, account: str) -> None:
        self._receivers.pop(account, None)

    def notify(self, event: TransferEvent) -> None:
        hook = self._receivers.get(event.recipient)
        if hook is not None:
            hook(event)

    def record(self, event: TransferEvent) -> None:
        self._transfer_history.append(event)
        self.notify(event)

    def balance_of(self, asset: AssetClass, account: str) -> int:
        """Get balance for account"""
        return self._balances.get(_fungible(asset).value, {}).get(account, 0)

    def total_supply(self, asset: AssetClass) -> int:
        return self._supply.get(_fungible(asset).value, 0)

    def mint(self, asset: AssetClass, account: str, amount: int, memo: str = "mint") -> None:
        asset = _fungible(asset)
        if amount <= 0:
            raise InvalidAmount(f"Mint amount must be positive, got {amount}")
        book = self._balances.setdefault(asset.value, {})
        book[account] = book.get(account, 0) + amount
        self._supply[asset.value] = self._supply.get(asset.value, 0) + amount
        self.record(TransferEvent(asset.value, "", account, amount, memo))

    def transfer(
        self,
        asset: AssetClass,
        sender: str,
        recipient: str,
        amount: int,
        memo: str = "",
    ) -> TransferEvent:
        """Move tokens between accounts, then run the recipient hook"""

        asset = _fungible(asset)
        if amount <= 0:
            raise InvalidAmount(f"Transfer amount must be positive, got {amount}")

        book = self._balances.setdefault(asset.value, {})
        sender_balance = book.get(sender, 0)
        if sender_balance < amount:
            raise InsufficientBalance(
                f"{short(sender)} holds {sender_balance} {asset.value}, needs {amount}",
                details={"asset": asset.value, "balance": sender_balance, "amount": amount},
            )

        book[sender] = sender_balance - amount
        book[recipient] = book.get(recipient, 0) + amount

        event = TransferEvent(asset.value, sender, recipient, amount, memo)
        self.record(event)
        return event

    def get_transfer_history(self, account: Optional[str] = None) -> List[TransferEvent]:
        """Get transfer history, optionally filtered to one account"""
        if account is None:
            return list(self._transfer_history)
        return [e for e in self._transfer_history if account in (e.sender, e.recipient)]

    def to_dict(self) -> dict:
        return {
            "balances": {asset: dict(book) for asset, book in self._balances.items()},
            "supply": dict(self._supply),
            "transfer_history": [e.to_dict() for e in self._transfer_history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Ledger':
        ledger = cls()
        ledger._balances = {asset: dict(book) for asset, book in data["balances"].items()}
        ledger._supply = dict(data["supply"])
        ledger._transfer_history = [TransferEvent(**e) for e in data["transfer_history"]]
        return ledger


class CollectibleRegistry(Snapshottable):
    """Ownership of non-fungible assets keyed by (collection, token_id)"""

    _state_fields = ("_owners",)

    def __init__(self, ledger: Ledger):
        self._owners: Dict[Tuple[str, int], str] = {}
        self.ledger = ledger

    def mint(self, collection: str, token_id: int, owner: str) -> None:
        key = (collection, int(token_id))
        if key in self._owners:
            raise InvalidAmount(f"Token {token_id} of {short(collection)} already exists")
        self._owners[key] = owner

    def owner_of(self, collection: str, token_id: int) -> Optional[str]:
        return self._owners.get((collection, int(token_id)))

    def transfer(self, collection: str, token_id: int, sender: str, recipient: str, memo: str = "") -> TransferEvent:
        key = (collection, int(token_id))
        if self._owners.get(key) != sender:
            raise NotAssetOwner(
                f"{short(sender)} does not own token {token_id} of {short(collection)}",
                details={"collection": collection, "token_id": token_id},
            )
        self._owners[key] = recipient
        event = TransferEvent(
            AssetClass.COLLECTIBLE.value, sender, recipient, 1, memo,
            collection=collection, token_id=int(token_id),
        )
        self.ledger.record(event)
        return event

    def tokens_of(self, owner: str) -> List[Tuple[str, int]]:
        return sorted(key for key, holder in self._owners.items() if holder == owner)

    def to_dict(self) -> dict:
        return {
            "owners": [
                {"collection": c, "token_id": t, "owner": o}
                for (c, t), o in sorted(self._owners.items())
            ]
        }

    @classmethod
    def from_dict(cls, data: dict, ledger: Ledger) -> 'CollectibleRegistry':
        registry = cls(ledger)
        for row in data["owners"]:
            registry._owners[(row["collection"], int(row["token_id"]))] = row["owner"]
        return registry


def _fungible(asset) -> AssetClass:
    asset = coerce_asset(asset)
    if not asset.is_fungible:
        raise InvalidAssetClass("Collectibles move through CollectibleRegistry")
    return asset
