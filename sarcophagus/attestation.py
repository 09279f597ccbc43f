"""
Attestation registry: oracle-verified facts about identities.

Age attestations gate vault creation and vesting; death attestations of
arbitrary identities drive contingent-beneficiary routing; liveness proofs
submitted by an owner or their emergency contact block death confirmation.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from .errors import AccessDenied, InvalidAddress, InvalidAge, NotVerified
from .guard import Snapshottable
from .identity import require_identity, short
from .rules import YEAR, ProtocolRules

logger = logging.getLogger(__name__)


@dataclass
class AgeAttestation:
    age: int
    verified_at: int
    proof_ref: str
    oracle: str


@dataclass
class DeathAttestation:
    oracle: str
    proof_ref: str
    attested_at: int


@dataclass
class ActivityProof:
    proof_type: str
    details: str
    reporter: str
    timestamp: int


class AttestationRegistry(Snapshottable):

    _state_fields = ("_ages", "_deaths", "_activity", "_emergency_contacts")

    def __init__(self, rules: ProtocolRules):
        self.rules = rules
        self._ages: Dict[str, AgeAttestation] = {}
        self._deaths: Dict[str, DeathAttestation] = {}
        self._activity: Dict[str, List[ActivityProof]] = {}
        self._emergency_contacts: Dict[str, str] = {}

    # ---- age ----

    def record_age(self, oracle: str, user: str, age: int, proof_ref: str, now: int) -> AgeAttestation:
        require_identity(user, "user")
        if not self.rules.is_valid_age(age):
            raise InvalidAge(
                f"Age {age} outside {self.rules.min_age}..{self.rules.max_age}",
                details={"age": age},
            )
        attestation = AgeAttestation(age, now, proof_ref, oracle)
        self._ages[user] = attestation
        logger.info("Age %d verified for %s by %s", age, short(user), short(oracle))
        return attestation

    def is_verified(self, user: str) -> bool:
        return user in self._ages

    def get_age_attestation(self, user: str) -> Optional[AgeAttestation]:
        return self._ages.get(user)

    def age_of(self, user: str, now: int) -> int:
        """Attested age advanced by whole years elapsed since verification"""
        attestation = self._ages.get(user)
        if attestation is None:
            raise NotVerified(f"{short(user)} has no age attestation")
        return attestation.age + max(0, now - attestation.verified_at) // YEAR

    # ---- death of arbitrary identities ----

    def record_death(self, oracle: str, user: str, proof_ref: str, now: int) -> DeathAttestation:
        require_identity(user, "user")
        attestation = DeathAttestation(oracle, proof_ref, now)
        self._deaths.setdefault(user, attestation)
        logger.info("Death of %s attested by %s", short(user), short(oracle))
        return self._deaths[user]

    def is_deceased(self, user: str) -> bool:
        return user in self._deaths

    # ---- liveness ----

    def set_emergency_contact(self, owner: str, contact: str) -> None:
        require_identity(contact, "emergency contact")
        if contact == owner:
            raise InvalidAddress("Owner cannot be their own emergency contact")
        self._emergency_contacts[owner] = contact

    def emergency_contact(self, owner: str) -> Optional[str]:
        return self._emergency_contacts.get(owner)

    def can_report_for(self, reporter: str, owner: str) -> bool:
        return reporter == owner or self._emergency_contacts.get(owner) == reporter

    def record_activity(self, reporter: str, owner: str, proof_type: str, details: str, now: int) -> ActivityProof:
        if not self.can_report_for(reporter, owner):
            raise AccessDenied(f"{short(reporter)} cannot prove liveness for {short(owner)}")
        proof = ActivityProof(proof_type, details, reporter, now)
        self._activity.setdefault(owner, []).append(proof)
        logger.debug("Activity %s recorded for %s", proof_type, short(owner))
        return proof

    def activity_history(self, owner: str) -> List[ActivityProof]:
        return list(self._activity.get(owner, []))

    def last_activity(self, owner: str) -> Optional[int]:
        history = self._activity.get(owner)
        return history[-1].timestamp if history else None

    def is_active(self, owner: str, now: int) -> bool:
        """True while the latest liveness proof is inside the inactivity threshold"""
        last = self.last_activity(owner)
        return last is not None and now - last < self.rules.inactivity_threshold

    def to_dict(self) -> dict:
        return {
            "ages": {user: asdict(a) for user, a in self._ages.items()},
            "deaths": {user: asdict(d) for user, d in self._deaths.items()},
            "activity": {
                owner: [asdict(p) for p in proofs] for owner, proofs in self._activity.items()
            },
            "emergency_contacts": dict(self._emergency_contacts),
        }

    @classmethod
    def from_dict(cls, data: dict, rules: ProtocolRules) -> 'AttestationRegistry':
        registry = cls(rules)
        registry._ages = {user: AgeAttestation(**a) for user, a in data["ages"].items()}
        registry._deaths = {user: DeathAttestation(**d) for user, d in data["deaths"].items()}
        registry._activity = {
            owner: [ActivityProof(**p) for p in proofs]
            for owner, proofs in data["activity"].items()
        }
        registry._emergency_contacts = dict(data["emergency_contacts"])
        return registry
