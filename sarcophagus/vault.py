import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Sequence

from .errors import (
    InvalidAge,
    InvalidBeneficiary,
    InvalidBeneficiaryCount,
    InvalidMilestone,
    InvalidPercentage,
    SarcophagusAlreadyExists,
    SarcophagusNotExists,
    TotalPercentageNot100,
)
from .guard import Snapshottable
from .identity import require_identity, short
from .ledger import DEPOSIT_CLASSES, AssetClass
from .rules import BASIS_POINTS, ProtocolRules

logger = logging.getLogger(__name__)


@dataclass
class VestingParams:
    """Optional release terms for one beneficiary, supplied at vault creation"""
    vesting_duration: int = 0  # cliff after death is final, seconds
    is_conditional: bool = False
    condition: str = ""
    guardian: Optional[str] = None
    contingent: Optional[str] = None
    survivorship_period: int = 0
    full_access_age: Optional[int] = None
    monthly_allowance: int = 0

    @property
    def has_schedule(self) -> bool:
        return self.full_access_age is not None or self.monthly_allowance > 0


@dataclass
class Milestone:
    description: str
    amount: int
    achieved: bool = False
    proof_ref: str = ""
    claimed: bool = False


@dataclass
class VestingSchedule:
    """Age gate, allowance and milestones for one opened entitlement"""
    full_access_age: Optional[int] = None
    monthly_allowance: int = 0
    guardian: Optional[str] = None
    last_allowance_time: Optional[int] = None
    milestones: List[Milestone] = field(default_factory=list)
    entitlement: Dict[str, int] = field(default_factory=dict)  # asset -> unreleased
    released: int = 0
    guardian_withdrawals: int = 0
    full_access_claimed: bool = False

    @property
    def remaining(self) -> int:
        return sum(self.entitlement.values())

    @property
    def reserved(self) -> int:
        """Funds held back for milestones not yet claimed"""
        return sum(m.amount for m in self.milestones if not m.claimed)

    @property
    def free(self) -> int:
        return max(0, self.remaining - self.reserved)

    def milestone(self, index: int) -> Milestone:
        if not (0 <= index < len(self.milestones)):
            raise InvalidMilestone(f"No milestone at index {index}")
        return self.milestones[index]

    def is_full_access_age(self, age: Optional[int]) -> bool:
        if self.full_access_age is None:
            return True
        return age is not None and age >= self.full_access_age

    @classmethod
    def from_dict(cls, data: dict) -> 'VestingSchedule':
        data = dict(data)
        data["milestones"] = [Milestone(**m) for m in data["milestones"]]
        return cls(**data)


@dataclass
class Beneficiary:
    """One entry of a vault's ordered beneficiary list"""
    recipient: str
    percentage_bps: int
    vesting_duration: int = 0
    is_conditional: bool = False
    condition: str = ""
    condition_satisfied: bool = False
    condition_proof: str = ""
    guardian: Optional[str] = None
    contingent: Optional[str] = None
    survivorship_period: int = 0
    vesting: Optional[VestingSchedule] = None
    claimed: bool = False
    claimed_by: Optional[str] = None
    claimed_at: Optional[int] = None

    def __post_init__(self):
        if not (0 < self.percentage_bps <= BASIS_POINTS):
            raise InvalidPercentage(
                f"Share must be between 1 and {BASIS_POINTS} bps, got {self.percentage_bps}"
            )

    @property
    def release_delay(self) -> int:
        return max(self.vesting_duration, self.survivorship_period)

    def share_of(self, amount: int) -> int:
        return amount * self.percentage_bps // BASIS_POINTS

    @classmethod
    def from_dict(cls, data: dict) -> 'Beneficiary':
        data = dict(data)
        if data.get("vesting") is not None:
            data["vesting"] = VestingSchedule.from_dict(data["vesting"])
        return cls(**data)


@dataclass
class VaultRecord:
    """Per-owner record of locked value, beneficiaries and death status"""
    owner: str
    beneficiaries: List[Beneficiary]
    created_at: int
    locked: Dict[str, int] = field(default_factory=dict)  # asset -> amount in escrow
    deceased: bool = False
    death_timestamp: Optional[int] = None
    age_at_death: Optional[int] = None
    total_deposited: int = 0
    withdrawn: int = 0
    penalties_paid: int = 0
    estate_settled: bool = False
    deposit_log: List[List[int]] = field(default_factory=list)  # [timestamp, value]

    def locked_amount(self, asset: AssetClass) -> int:
        return self.locked.get(asset.value, 0)

    def add_locked(self, asset: AssetClass, amount: int) -> None:
        self.locked[asset.value] = self.locked.get(asset.value, 0) + amount

    def remove_locked(self, asset: AssetClass, amount: int) -> None:
        self.locked[asset.value] = self.locked.get(asset.value, 0) - amount

    @property
    def deposit_value(self) -> int:
        """Locked value of the deposit classes, excluding yield tokens"""
        return sum(self.locked_amount(asset) for asset in DEPOSIT_CLASSES)

    def window_total(self, now: int, window: int) -> int:
        return sum(value for ts, value in self.deposit_log if ts > now - window)

    def log_deposit(self, now: int, value: int, window: int) -> None:
        self.deposit_log = [entry for entry in self.deposit_log if entry[0] > now - window]
        self.deposit_log.append([now, value])

    def entry(self, index: int) -> Beneficiary:
        if not (0 <= index < len(self.beneficiaries)):
            raise InvalidBeneficiary(f"No beneficiary at index {index}")
        return self.beneficiaries[index]

    def is_beneficiary(self, identity: str) -> bool:
        return any(b.recipient == identity for b in self.beneficiaries)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'VaultRecord':
        data = dict(data)
        data["beneficiaries"] = [Beneficiary.from_dict(b) for b in data["beneficiaries"]]
        return cls(**data)


def build_beneficiaries(
    owner: str,
    recipients: Sequence[str],
    percentages: Sequence[int],
    vesting: Optional[Sequence[Optional[VestingParams]]],
    rules: ProtocolRules,
) -> List[Beneficiary]:
    """Validate creation input and build the ordered beneficiary list"""

    if not (1 <= len(recipients) <= rules.max_beneficiaries):
        raise InvalidBeneficiaryCount(
            f"Between 1 and {rules.max_beneficiaries} beneficiaries required, got {len(recipients)}"
        )
    if len(recipients) != len(percentages):
        raise InvalidBeneficiaryCount("Beneficiaries and percentages differ in length")
    if vesting is not None and len(vesting) != len(recipients):
        raise InvalidBeneficiaryCount("Vesting parameters and beneficiaries differ in length")

    seen = set()
    for recipient in recipients:
        require_identity(recipient, "beneficiary")
        if recipient == owner:
            raise InvalidBeneficiary("Owner cannot be their own beneficiary")
        if recipient in seen:
            raise InvalidBeneficiary(f"Duplicate beneficiary {short(recipient)}")
        seen.add(recipient)

    if any(p <= 0 for p in percentages):
        raise TotalPercentageNot100("Every share must be positive")
    total = sum(percentages)
    if total != BASIS_POINTS:
        raise TotalPercentageNot100(
            f"Shares must sum to {BASIS_POINTS} bps, got {total}",
            details={"total": total},
        )

    entries = []
    for i, (recipient, bps) in enumerate(zip(recipients, percentages)):
        params = (vesting[i] if vesting is not None else None) or VestingParams()
        for role, identity in (("guardian", params.guardian), ("contingent", params.contingent)):
            if identity is not None:
                require_identity(identity, role)
        if params.contingent is not None and params.contingent in (owner, recipient):
            raise InvalidBeneficiary("Contingent beneficiary must differ from owner and recipient")

        schedule = None
        if params.has_schedule:
            if params.full_access_age is not None and not rules.is_valid_age(params.full_access_age):
                raise InvalidAge(f"Full access age {params.full_access_age} out of range")
            schedule = VestingSchedule(
                full_access_age=params.full_access_age,
                monthly_allowance=params.monthly_allowance,
                guardian=params.guardian,
            )

        entries.append(Beneficiary(
            recipient=recipient,
            percentage_bps=bps,
            vesting_duration=params.vesting_duration,
            is_conditional=params.is_conditional,
            condition=params.condition,
            guardian=params.guardian,
            contingent=params.contingent,
            survivorship_period=params.survivorship_period,
            vesting=schedule,
        ))
    return entries


class VaultBook(Snapshottable):
    """All vault records, addressable by owner identity"""

    _state_fields = ("_vaults",)

    def __init__(self):
        self._vaults: Dict[str, VaultRecord] = {}

    def exists(self, owner: str) -> bool:
        return owner in self._vaults

    def get(self, owner: str) -> Optional[VaultRecord]:
        return self._vaults.get(owner)

    def require(self, owner: str) -> VaultRecord:
        vault = self._vaults.get(owner)
        if vault is None:
            raise SarcophagusNotExists(f"No vault for {short(owner)}")
        return vault

    def add(self, vault: VaultRecord) -> VaultRecord:
        if vault.owner in self._vaults:
            raise SarcophagusAlreadyExists(f"Vault for {short(vault.owner)} already exists")
        self._vaults[vault.owner] = vault
        logger.info(
            "Vault created for %s with %d beneficiaries",
            short(vault.owner),
            len(vault.beneficiaries),
        )
        return vault

    def owners(self) -> List[str]:
        return list(self._vaults)

    def to_dict(self) -> dict:
        return {owner: vault.to_dict() for owner, vault in self._vaults.items()}

    @classmethod
    def from_dict(cls, data: dict) -> 'VaultBook':
        book = cls()
        book._vaults = {owner: VaultRecord.from_dict(v) for owner, v in data.items()}
        return book
