from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

UNIT = 10 ** 18
DAY = 86_400
MONTH = 30 * DAY
YEAR = 365 * DAY
BASIS_POINTS = 10_000


class WithdrawalKind(Enum):
    EMERGENCY = "emergency"
    PARTIAL = "partial"
    FULL = "full"


@dataclass
class ProtocolRules:
    """Tunable protocol parameters shared by every component"""

    # Beneficiaries and attestation
    max_beneficiaries: int
    min_age: int
    max_age: int

    # Deposits and rate limiting
    min_deposit: int  # base units per transaction, summed across asset classes
    rate_limit_window: int  # seconds
    max_deposit_per_window: int

    # Death consensus
    required_confirmations: int
    challenge_period: int  # seconds
    inactivity_threshold: int  # seconds

    # Yield engine
    initial_bonus_bps: int
    base_daily_rate: int  # per rate_precision per day
    bonus_daily_rate: int
    rate_precision: int
    bonus_threshold: int  # seconds staked before the bonus rate applies
    reward_supply: int

    # Exit schedule for the owner
    emergency_withdrawal_after: int
    full_withdrawal_after: int
    emergency_penalty_bps: int
    partial_penalty_bps: int
    full_penalty_bps: int
    max_partial_withdrawal_bps: int
    yield_withdrawal_fee_bps: int

    # Vesting and auxiliary assets
    allowance_period: int
    global_max_asset_value: int

    @classmethod
    def standard(cls) -> 'ProtocolRules':
        """Production parameters"""
        return cls(
            max_beneficiaries=5,
            min_age=18,
            max_age=120,
            min_deposit=100 * UNIT,
            rate_limit_window=DAY,
            max_deposit_per_window=100_000 * UNIT,
            required_confirmations=3,
            challenge_period=30 * DAY,
            inactivity_threshold=180 * DAY,
            initial_bonus_bps=1000,  # 10% of each deposit
            base_daily_rate=10,  # 0.01% per day
            bonus_daily_rate=15,  # 0.015% per day
            rate_precision=100_000,
            bonus_threshold=YEAR,
            reward_supply=95_000_000 * UNIT,
            emergency_withdrawal_after=7 * YEAR,
            full_withdrawal_after=15 * YEAR,
            emergency_penalty_bps=9000,
            partial_penalty_bps=3500,
            full_penalty_bps=2000,
            max_partial_withdrawal_bps=3000,
            yield_withdrawal_fee_bps=50,  # 0.5%
            allowance_period=MONTH,
            global_max_asset_value=1_000 * UNIT,
        )

    @classmethod
    def accelerated(cls) -> 'ProtocolRules':
        """Short windows for demos and test networks"""
        rules = cls.standard()
        rules.required_confirmations = 2
        rules.challenge_period = DAY
        rules.inactivity_threshold = 7 * DAY
        rules.bonus_threshold = 30 * DAY
        rules.emergency_withdrawal_after = 90 * DAY
        rules.full_withdrawal_after = 180 * DAY
        rules.allowance_period = DAY
        return rules

    def __post_init__(self):
        if self.required_confirmations < 1:
            raise ValueError("At least one death confirmation must be required")
        if not (0 < self.min_age <= self.max_age):
            raise ValueError(f"Invalid age bounds {self.min_age}..{self.max_age}")
        if self.emergency_withdrawal_after > self.full_withdrawal_after:
            raise ValueError("Emergency exit cannot open after full withdrawal")

    def is_valid_age(self, age: int) -> bool:
        return self.min_age <= age <= self.max_age

    def initial_bonus(self, deposit_value: int) -> int:
        """Yield tokens minted for a single deposit event"""
        return (deposit_value * self.initial_bonus_bps) // BASIS_POINTS

    def penalty_bps(self, kind: WithdrawalKind) -> int:
        if kind == WithdrawalKind.EMERGENCY:
            return self.emergency_penalty_bps
        if kind == WithdrawalKind.PARTIAL:
            return self.partial_penalty_bps
        return self.full_penalty_bps

    def calculate_penalty(self, amount: int, kind: WithdrawalKind) -> int:
        """Calculate the protocol penalty for an owner exit"""
        return (amount * self.penalty_bps(kind)) // BASIS_POINTS

    def withdrawal_opens_at(self, kind: WithdrawalKind, created_at: int) -> int:
        if kind == WithdrawalKind.EMERGENCY:
            return created_at + self.emergency_withdrawal_after
        return created_at + self.full_withdrawal_after

    def check_withdrawal(
        self,
        kind: WithdrawalKind,
        created_at: int,
        now: int,
        portion_bps: Optional[int] = None,
    ) -> tuple[bool, str]:
        """Validate an owner exit against the lock schedule"""

        opens_at = self.withdrawal_opens_at(kind, created_at)
        if now < opens_at:
            remaining_days = (opens_at - now + DAY - 1) // DAY
            return False, f"{kind.value} withdrawal locked: {remaining_days} days remaining"

        if kind == WithdrawalKind.PARTIAL:
            if portion_bps is None or portion_bps <= 0:
                return False, "Partial withdrawal needs a positive portion"
            if portion_bps > self.max_partial_withdrawal_bps:
                return False, (
                    f"Partial withdrawal {portion_bps} bps exceeds maximum "
                    f"{self.max_partial_withdrawal_bps} bps"
                )

        return True, "Withdrawal allowed"

    def check_rate_limit(self, window_total: int, amount: int) -> tuple[bool, str]:
        """Check a deposit against the rolling window ceiling"""
        if window_total + amount > self.max_deposit_per_window:
            headroom = max(0, self.max_deposit_per_window - window_total)
            return False, f"Deposit {amount} exceeds window headroom {headroom}"
        return True, "Within rate limit"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'ProtocolRules':
        return cls(**data)
