"""
Death confirmation state machine.

Independent oracles confirm an owner's death one at a time. Reaching the
required number of distinct confirmations opens a challenge window during
which the owner may revert the confirmation once; when the window elapses
without a challenge the death is final and distribution may begin.

    NONE -> PARTIAL -> CONFIRMED -> CHALLENGEABLE -> FINAL
                                        |
                                        +-> REVERTED (confirmations reset)
"""

import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional

from .attestation import AttestationRegistry
from .errors import (
    AlreadyConfirmed,
    ChallengeAlreadyUsed,
    ChallengePeriodEnded,
    DeathAlreadyVerified,
    DeathNotVerified,
    InChallengePeriod,
    InvalidTimestamp,
    StillActive,
)
from .guard import Snapshottable
from .identity import short
from .rules import ProtocolRules

logger = logging.getLogger(__name__)


class DeathStatus(Enum):
    NONE = "none"
    PARTIAL = "partial"
    CONFIRMED = "confirmed"
    CHALLENGEABLE = "challengeable"
    FINAL = "final"
    REVERTED = "reverted"


@dataclass
class DeathRecord:
    """Confirmation progress for one owner"""
    owner: str
    confirmers: List[str] = field(default_factory=list)
    death_timestamp: Optional[int] = None
    challenge_start: Optional[int] = None
    challenge_used: bool = False
    reverted_at: Optional[int] = None
    age_at_death: Optional[int] = None

    @property
    def count(self) -> int:
        return len(self.confirmers)

    def has_confirmed(self, oracle: str) -> bool:
        return oracle in self.confirmers

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'DeathRecord':
        return cls(**data)


class DeathConsensus(Snapshottable):
    """k-of-n oracle consensus with a one-time owner challenge"""

    _state_fields = ("_records",)

    def __init__(self, rules: ProtocolRules, attestations: AttestationRegistry):
        self.rules = rules
        self.attestations = attestations
        self._records: Dict[str, DeathRecord] = {}

    def get_record(self, owner: str) -> Optional[DeathRecord]:
        return self._records.get(owner)

    def window_end(self, record: DeathRecord) -> Optional[int]:
        if record.challenge_start is None:
            return None
        return record.challenge_start + self.rules.challenge_period

    def status(self, owner: str, now: int) -> DeathStatus:
        record = self._records.get(owner)
        if record is None:
            return DeathStatus.NONE
        if record.count == 0:
            return DeathStatus.REVERTED if record.reverted_at is not None else DeathStatus.NONE
        if record.count < self.rules.required_confirmations:
            return DeathStatus.PARTIAL
        if record.challenge_start is None:
            return DeathStatus.CONFIRMED
        if now < self.window_end(record):
            return DeathStatus.CHALLENGEABLE
        return DeathStatus.FINAL

    def is_threshold_reached(self, owner: str) -> bool:
        record = self._records.get(owner)
        return record is not None and record.count >= self.rules.required_confirmations

    def confirm(self, oracle: str, owner: str, now: int, death_timestamp: Optional[int] = None) -> DeathRecord:
        """Add one oracle confirmation; returns the updated record.

        Raises DeathAlreadyVerified once the threshold was reached,
        AlreadyConfirmed for a repeat oracle, and StillActive while the
        owner's last liveness proof is inside the inactivity threshold.
        """

        if self.is_threshold_reached(owner):
            raise DeathAlreadyVerified(f"Death of {short(owner)} already confirmed")

        record = self._records.setdefault(owner, DeathRecord(owner))
        if record.has_confirmed(oracle):
            raise AlreadyConfirmed(
                f"Oracle {short(oracle)} already confirmed death of {short(owner)}",
                details={"oracle": oracle, "confirmations": record.count},
            )

        if self.attestations.is_active(owner, now):
            raise StillActive(
                f"{short(owner)} proved liveness at {self.attestations.last_activity(owner)}",
                details={"last_activity": self.attestations.last_activity(owner)},
            )

        if death_timestamp is not None and death_timestamp > now:
            raise InvalidTimestamp(f"Death timestamp {death_timestamp} is in the future")

        record.confirmers.append(oracle)
        if record.death_timestamp is None:
            record.death_timestamp = now if death_timestamp is None else death_timestamp

        logger.info(
            "Death of %s confirmed by %s (%d/%d)",
            short(owner),
            short(oracle),
            record.count,
            self.rules.required_confirmations,
        )

        if record.count >= self.rules.required_confirmations:
            record.challenge_start = now
            if self.attestations.is_verified(owner):
                record.age_at_death = self.attestations.age_of(owner, record.death_timestamp)
            logger.info(
                "Death threshold reached for %s; challenge window open until %d",
                short(owner),
                self.window_end(record),
            )

        return record

    def challenge(self, owner: str, now: int) -> DeathRecord:
        """Owner reverts a pending confirmation before the window elapses"""

        record = self._records.get(owner)
        if record is None or record.count < self.rules.required_confirmations:
            raise DeathNotVerified(f"No confirmed death to challenge for {short(owner)}")

        if now >= self.window_end(record):
            raise ChallengePeriodEnded(
                "Challenge period ended",
                details={"window_end": self.window_end(record)},
            )

        if record.challenge_used:
            raise ChallengeAlreadyUsed(f"{short(owner)} already used their challenge")

        record.confirmers = []
        record.death_timestamp = None
        record.challenge_start = None
        record.age_at_death = None
        record.challenge_used = True
        record.reverted_at = now

        logger.info("Death of %s challenged and reverted", short(owner))
        return record

    def require_final(self, owner: str, now: int) -> DeathRecord:
        status = self.status(owner, now)
        if status == DeathStatus.CHALLENGEABLE:
            record = self._records[owner]
            raise InChallengePeriod(
                "Challenge period still open",
                details={"window_end": self.window_end(record)},
            )
        if status != DeathStatus.FINAL:
            raise DeathNotVerified(
                f"Death of {short(owner)} is not verified",
                details={"status": status.value},
            )
        return self._records[owner]

    def finalized_at(self, owner: str) -> Optional[int]:
        record = self._records.get(owner)
        if record is None or record.count < self.rules.required_confirmations:
            return None
        return self.window_end(record)

    def to_dict(self) -> dict:
        return {owner: record.to_dict() for owner, record in self._records.items()}

    @classmethod
    def from_dict(cls, data: dict, rules: ProtocolRules, attestations: AttestationRegistry) -> 'DeathConsensus':
        consensus = cls(rules, attestations)
        consensus._records = {owner: DeathRecord.from_dict(r) for owner, r in data.items()}
        return consensus
