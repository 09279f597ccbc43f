"""
Versioned configuration store.

Holds the registries that every component consults: role membership
(administrators, oracles), the auxiliary-asset collection whitelist with
per-collection value caps, the global asset value cap, and the pause switch.
It is passed by reference into the components that need it; every mutation
goes through an administrator call, bumps `version`, and is appended to the
audit log.
"""

import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from .errors import AccessDenied, InvalidAmount, InvalidRoleChange, ProtocolPaused
from .guard import Snapshottable
from .identity import require_identity, short

logger = logging.getLogger(__name__)


class Role(Enum):
    ADMIN = "admin"
    ORACLE = "oracle"


@dataclass
class AuditEntry:
    version: int
    actor: str
    action: str
    timestamp: int
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class ConfigStore(Snapshottable):

    _state_fields = (
        "version",
        "_roles",
        "_collections",
        "global_max_asset_value",
        "paused",
    )
    _journal_fields = ("_audit_log",)

    def __init__(self, admin: str, global_max_asset_value: int):
        require_identity(admin, "admin")
        self.version = 0
        self._roles: Dict[str, Set[str]] = {role.value: set() for role in Role}
        self._roles[Role.ADMIN.value].add(admin)
        self._collections: Dict[str, int] = {}  # collection -> max declared value
        self.global_max_asset_value = global_max_asset_value
        self.paused = False
        self._audit_log: List[AuditEntry] = []

    # ---- queries ----

    def has_role(self, role: Role, account: str) -> bool:
        return account in self._roles[role.value]

    def members(self, role: Role) -> List[str]:
        return sorted(self._roles[role.value])

    def require_role(self, role: Role, account: str, operation: str) -> None:
        if not self.has_role(role, account):
            logger.warning("%s denied %s: missing %s role", short(account), operation, role.value)
            raise AccessDenied(
                f"{operation} requires the {role.value} role",
                details={"role": role.value, "account": account},
            )

    def require_not_paused(self, operation: str) -> None:
        if self.paused:
            raise ProtocolPaused(f"{operation} is unavailable while the protocol is paused")

    def is_whitelisted(self, collection: str) -> bool:
        return collection in self._collections

    def collection_max(self, collection: str) -> Optional[int]:
        return self._collections.get(collection)

    def collections(self) -> Dict[str, int]:
        return dict(self._collections)

    def audit_log(self) -> List[AuditEntry]:
        return list(self._audit_log)

    # ---- administrative mutations ----

    def _record(self, actor: str, action: str, now: int, **details) -> None:
        self.version += 1
        self._audit_log.append(AuditEntry(self.version, actor, action, now, details))
        logger.info("Config v%d: %s by %s %s", self.version, action, short(actor), details)

    def grant_role(self, caller: str, role: Role, account: str, now: int) -> None:
        self.require_role(Role.ADMIN, caller, "grant_role")
        require_identity(account, role.value)
        if account in self._roles[role.value]:
            return
        self._roles[role.value].add(account)
        self._record(caller, "grant_role", now, role=role.value, account=account)

    def revoke_role(self, caller: str, role: Role, account: str, now: int) -> None:
        self.require_role(Role.ADMIN, caller, "revoke_role")
        if account not in self._roles[role.value]:
            raise InvalidRoleChange(f"{short(account)} does not hold the {role.value} role")
        if role == Role.ADMIN and len(self._roles[role.value]) == 1:
            raise InvalidRoleChange("Cannot revoke the last administrator")
        self._roles[role.value].discard(account)
        self._record(caller, "revoke_role", now, role=role.value, account=account)

    def whitelist_collection(self, caller: str, collection: str, max_value: int, now: int) -> None:
        self.require_role(Role.ADMIN, caller, "whitelist_collection")
        require_identity(collection, "collection")
        if max_value <= 0:
            raise InvalidAmount(f"Collection cap must be positive, got {max_value}")
        self._collections[collection] = max_value
        self._record(caller, "whitelist_collection", now, collection=collection, max_value=max_value)

    def remove_collection(self, caller: str, collection: str, now: int) -> None:
        self.require_role(Role.ADMIN, caller, "remove_collection")
        if collection not in self._collections:
            return
        del self._collections[collection]
        self._record(caller, "remove_collection", now, collection=collection)

    def update_global_max_asset_value(self, caller: str, value: int, now: int) -> None:
        self.require_role(Role.ADMIN, caller, "update_global_max_asset_value")
        if value <= 0:
            raise InvalidAmount(f"Global cap must be positive, got {value}")
        self.global_max_asset_value = value
        self._record(caller, "update_global_max_asset_value", now, value=value)

    def pause(self, caller: str, now: int) -> None:
        self.require_role(Role.ADMIN, caller, "pause")
        if not self.paused:
            self.paused = True
            self._record(caller, "pause", now)

    def unpause(self, caller: str, now: int) -> None:
        self.require_role(Role.ADMIN, caller, "unpause")
        if self.paused:
            self.paused = False
            self._record(caller, "unpause", now)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "roles": {role: sorted(members) for role, members in self._roles.items()},
            "collections": dict(self._collections),
            "global_max_asset_value": self.global_max_asset_value,
            "paused": self.paused,
            "audit_log": [entry.to_dict() for entry in self._audit_log],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ConfigStore':
        admins = data["roles"][Role.ADMIN.value]
        store = cls(admins[0], data["global_max_asset_value"])
        store.version = data["version"]
        store._roles = {role: set(members) for role, members in data["roles"].items()}
        store._collections = dict(data["collections"])
        store.paused = data["paused"]
        store._audit_log = [AuditEntry(**entry) for entry in data["audit_log"]]
        return store
