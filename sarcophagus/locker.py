"""
Auxiliary asset locker.

Non-fungible assets from whitelisted collections can be locked into a vault
and assigned to one of its beneficiaries. Locked tokens are held by the
escrow account and released to the beneficiary when their entry is opened.
A vault's aggregate asset value is always computed from the live locked
entries, so unlocking or releasing an asset is reflected immediately.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple

from .errors import (
    AssetAlreadyLocked,
    AssetNotLocked,
    CollectionNotWhitelisted,
    InvalidAmount,
    InvalidBeneficiary,
    NotAssetOwner,
)
from .guard import Snapshottable
from .identity import require_identity, short
from .ledger import ESCROW, CollectibleRegistry
from .registry import ConfigStore
from .vault import VaultRecord

logger = logging.getLogger(__name__)


@dataclass
class LockedAsset:
    """A non-fungible token held in escrow for one beneficiary"""
    collection: str
    token_id: int
    owner: str
    beneficiary: str
    declared_value: int
    value: int  # declared value after collection and global caps
    locked_at: int
    locked: bool = True
    released_to: Optional[str] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.collection, self.token_id)

    def to_dict(self) -> dict:
        return asdict(self)


class AssetLocker(Snapshottable):
    """Locked auxiliary assets of every vault"""

    _state_fields = ("_entries",)

    def __init__(self, config: ConfigStore, collectibles: CollectibleRegistry):
        self.config = config
        self.collectibles = collectibles
        self._entries: Dict[Tuple[str, int], LockedAsset] = {}

    def get(self, collection: str, token_id: int) -> Optional[LockedAsset]:
        """Get a locked entry by collection and token id"""
        return self._entries.get((collection, int(token_id)))

    def capped_value(self, collection: str, declared_value: int) -> int:
        """Declared value limited by the collection and global caps"""
        caps = [declared_value, self.config.global_max_asset_value]
        collection_max = self.config.collection_max(collection)
        if collection_max is not None:
            caps.append(collection_max)
        return min(caps)

    def lock(
        self,
        vault: VaultRecord,
        collection: str,
        token_id: int,
        declared_value: int,
        beneficiary: str,
        now: int,
    ) -> LockedAsset:
        """Move a whitelisted token into escrow, assigned to a beneficiary"""
        require_identity(collection, "collection")
        require_identity(beneficiary, "beneficiary")
        if declared_value <= 0:
            raise InvalidAmount(f"Declared value must be positive, got {declared_value}")
        if not self.config.is_whitelisted(collection):
            raise CollectionNotWhitelisted(f"Collection {short(collection)} is not whitelisted")
        if not vault.is_beneficiary(beneficiary):
            raise InvalidBeneficiary(f"{short(beneficiary)} is not a beneficiary of this vault")

        token_id = int(token_id)
        existing = self._entries.get((collection, token_id))
        if existing is not None and existing.locked:
            raise AssetAlreadyLocked(
                f"Token {token_id} of {short(collection)} is already locked",
                details={"owner": existing.owner},
            )
        if self.collectibles.owner_of(collection, token_id) != vault.owner:
            raise NotAssetOwner(f"{short(vault.owner)} does not own token {token_id}")

        entry = LockedAsset(
            collection=collection,
            token_id=token_id,
            owner=vault.owner,
            beneficiary=beneficiary,
            declared_value=declared_value,
            value=self.capped_value(collection, declared_value),
            locked_at=now,
        )
        self._entries[entry.key] = entry
        self.collectibles.transfer(collection, token_id, vault.owner, ESCROW, "asset lock")

        logger.info(
            "Token %d of %s locked by %s at value %d",
            token_id,
            short(collection),
            short(vault.owner),
            entry.value,
        )
        return entry

    def _require_locked_by(self, owner: str, collection: str, token_id: int) -> LockedAsset:
        entry = self._entries.get((collection, int(token_id)))
        if entry is None or not entry.locked:
            raise AssetNotLocked(f"Token {token_id} of {short(collection)} is not locked")
        if entry.owner != owner:
            raise NotAssetOwner(f"Token {token_id} is locked by another vault")
        return entry

    def unlock(self, owner: str, collection: str, token_id: int) -> LockedAsset:
        """Return a locked token to its owner"""
        entry = self._require_locked_by(owner, collection, token_id)
        entry.locked = False
        self.collectibles.transfer(collection, entry.token_id, ESCROW, owner, "asset unlock")
        logger.info("Token %d of %s unlocked by %s", entry.token_id, short(collection), short(owner))
        return entry

    def reassign(self, vault: VaultRecord, collection: str, token_id: int, beneficiary: str) -> LockedAsset:
        """Assign a locked token to another beneficiary"""
        entry = self._require_locked_by(vault.owner, collection, token_id)
        if not vault.is_beneficiary(beneficiary):
            raise InvalidBeneficiary(f"{short(beneficiary)} is not a beneficiary of this vault")
        entry.beneficiary = beneficiary
        return entry

    def release_for(self, owner: str, beneficiary: str, recipient: str) -> List[LockedAsset]:
        """Hand every asset assigned to `beneficiary` over to `recipient`"""
        released = []
        for entry in self.assets_of(owner):
            if entry.beneficiary != beneficiary:
                continue
            entry.locked = False
            entry.released_to = recipient
            self.collectibles.transfer(entry.collection, entry.token_id, ESCROW, recipient, "inheritance")
            released.append(entry)
        return released

    def assets_of(self, owner: str) -> List[LockedAsset]:
        """Live locked entries of one vault"""
        return [e for e in self._entries.values() if e.owner == owner and e.locked]

    def total_value(self, owner: str) -> int:
        """Aggregate capped value of a vault's live entries"""
        return sum(e.value for e in self.assets_of(owner))

    def to_dict(self) -> dict:
        return {"entries": [e.to_dict() for _, e in sorted(self._entries.items())]}

    @classmethod
    def from_dict(cls, data: dict, config: ConfigStore, collectibles: CollectibleRegistry) -> 'AssetLocker':
        locker = cls(config, collectibles)
        for row in data["entries"]:
            entry = LockedAsset(**row)
            locker._entries[entry.key] = entry
        return locker
