"""
Yield accrual engine.

Two reward channels, applied independently:

1. Initial bonus: a fixed share of every deposit event, minted immediately.
2. Continuous accrual on the staked value:

       reward = value * rate * seconds / (rate_precision * DAY)

   The rate switches from the base rate to the bonus rate for time at or
   after `stake_start + bonus_threshold`. A period spanning the boundary is
   split piecewise, so elapsed time is never reclassified retroactively.

Every change of staked value checkpoints the accrued reward first. All
minting draws on one finite reward supply.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional

from .errors import NoRewardsToClaim, RewardSupplyExhausted
from .guard import Snapshottable
from .identity import short
from .ledger import ESCROW, AssetClass, Ledger
from .rules import DAY, ProtocolRules

logger = logging.getLogger(__name__)


@dataclass
class StakeRecord:
    """Accrual state of one vault's stake"""
    owner: str
    staked_value: int
    stake_start: int
    last_claim_time: int
    checkpoint: int
    accrued: int = 0
    total_earned: int = 0
    total_claimed: int = 0
    long_term_holder: bool = False
    closed: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class YieldEngine(Snapshottable):
    """Per-vault reward accrual against a capped token supply"""

    _state_fields = ("_stakes", "minted")

    def __init__(self, rules: ProtocolRules, ledger: Ledger):
        self.rules = rules
        self.ledger = ledger
        self._stakes: Dict[str, StakeRecord] = {}
        self.minted = 0

    @property
    def remaining_supply(self) -> int:
        """Unminted part of the reward supply"""
        return max(0, self.rules.reward_supply - self.minted)

    def get_stake(self, owner: str) -> Optional[StakeRecord]:
        """Get the stake of a vault, if any"""
        return self._stakes.get(owner)

    def accrual_between(self, stake: StakeRecord, start: int, end: int) -> int:
        """Reward for holding `stake.staked_value` from start to end"""
        if end <= start or stake.staked_value == 0:
            return 0

        boundary = stake.stake_start + self.rules.bonus_threshold
        base_seconds = max(0, min(end, boundary) - start)
        bonus_seconds = max(0, end - max(start, boundary))

        weighted = (
            self.rules.base_daily_rate * base_seconds
            + self.rules.bonus_daily_rate * bonus_seconds
        )
        return stake.staked_value * weighted // (self.rules.rate_precision * DAY)

    def _checkpoint(self, stake: StakeRecord, now: int) -> None:
        if stake.closed or now <= stake.checkpoint:
            return
        earned = self.accrual_between(stake, stake.checkpoint, now)
        stake.accrued += earned
        stake.total_earned += earned
        stake.checkpoint = now
        if now >= stake.stake_start + self.rules.bonus_threshold:
            stake.long_term_holder = True

    def pending_rewards(self, owner: str, now: int) -> int:
        """Accrued plus not yet checkpointed rewards"""
        stake = self._stakes.get(owner)
        if stake is None or stake.closed:
            return 0
        return stake.accrued + self.accrual_between(stake, stake.checkpoint, max(now, stake.checkpoint))

    def sync(self, owner: str, staked_value: int, now: int) -> StakeRecord:
        """Checkpoint, then move the stake to its new value"""
        stake = self._stakes.get(owner)
        if stake is None:
            stake = StakeRecord(owner, 0, now, now, now)
            self._stakes[owner] = stake
        if stake.closed:
            return stake
        self._checkpoint(stake, now)
        if stake.staked_value != staked_value:
            logger.debug("Stake of %s: %d -> %d", short(owner), stake.staked_value, staked_value)
        stake.staked_value = staked_value
        return stake

    def _mint(self, recipient: str, amount: int, memo: str) -> None:
        self.minted += amount
        self.ledger.mint(AssetClass.YIELD, recipient, amount, memo)

    def award_initial_bonus(self, owner: str, deposit_value: int) -> int:
        """Mint the per-deposit bonus, capped at the remaining supply"""
        bonus = min(self.rules.initial_bonus(deposit_value), self.remaining_supply)
        if bonus > 0:
            self._mint(owner, bonus, "initial bonus")
            logger.info("Initial bonus of %d minted to %s", bonus, short(owner))
        return bonus

    def claim(self, owner: str, now: int) -> int:
        """Mint every pending reward to the owner"""
        stake = self._stakes.get(owner)
        pending = self.pending_rewards(owner, now)
        if pending == 0:
            raise NoRewardsToClaim(f"No pending rewards for {short(owner)}")

        if pending > self.remaining_supply:
            logger.warning(
                "Reward claim of %d by %s exceeds remaining supply %d",
                pending,
                short(owner),
                self.remaining_supply,
            )
            raise RewardSupplyExhausted(
                "Claim would exceed the remaining reward supply",
                details={"pending": pending, "remaining": self.remaining_supply},
            )

        self._checkpoint(stake, now)
        stake.accrued = 0
        stake.last_claim_time = now
        stake.total_claimed += pending
        self._mint(owner, pending, "yield claim")

        logger.info("%s claimed %d yield", short(owner), pending)
        return pending

    def settle_estate(self, owner: str, death_timestamp: int) -> int:
        """Mint rewards accrued up to death into escrow and close the stake.

        Accrual after the death timestamp is forfeited. The minted amount is
        capped at the remaining supply so settlement can never block claims.
        """
        stake = self._stakes.get(owner)
        if stake is None or stake.closed:
            return 0

        self._checkpoint(stake, death_timestamp)
        amount = min(stake.accrued, self.remaining_supply)
        stake.accrued = 0
        stake.total_claimed += amount
        stake.closed = True
        if amount > 0:
            self._mint(ESCROW, amount, "estate settlement")
        logger.info("Estate of %s settled with %d yield", short(owner), amount)
        return amount

    def to_dict(self) -> dict:
        return {
            "minted": self.minted,
            "stakes": {owner: stake.to_dict() for owner, stake in self._stakes.items()},
        }

    @classmethod
    def from_dict(cls, data: dict, rules: ProtocolRules, ledger: Ledger) -> 'YieldEngine':
        engine = cls(rules, ledger)
        engine.minted = data["minted"]
        engine._stakes = {owner: StakeRecord(**s) for owner, s in data["stakes"].items()}
        return engine
