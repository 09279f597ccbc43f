"""
Beneficiary distribution and vesting.

Nothing is pushed on death. Each beneficiary entry is opened individually by
the first of `claim_inheritance`, `claim_monthly_allowance`,
`claim_full_access` or `claim_milestone` to run for it. Opening sets the
entry's claimed flag before any transfer, computes the share of every locked
asset class, and hands over the auxiliary assets assigned to the entry.
Entries without a vesting schedule are paid out in full; entries with one
move their share into an entitlement that the later calls draw down.
"""

import logging
from typing import Dict, Optional, Tuple

from .attestation import AttestationRegistry
from .death import DeathConsensus
from .errors import (
    AgeRestriction,
    AllowanceNotDue,
    AlreadyClaimed,
    ConditionNotMet,
    InvalidBeneficiary,
    MilestoneNotAchieved,
    NoFundsAvailable,
    VestingLocked,
    VestingNotConfigured,
)
from .identity import short
from .ledger import ESCROW, FUNGIBLE_CLASSES, AssetClass, Ledger
from .locker import AssetLocker
from .rules import ProtocolRules
from .vault import Beneficiary, VaultBook, VaultRecord, VestingSchedule
from .yield_engine import YieldEngine

logger = logging.getLogger(__name__)

Payout = Dict[str, int]


class DistributionEngine:
    """Opens beneficiary entries and draws down vested entitlements"""

    def __init__(
        self,
        rules: ProtocolRules,
        ledger: Ledger,
        vaults: VaultBook,
        death: DeathConsensus,
        attestations: AttestationRegistry,
        yield_engine: YieldEngine,
        locker: AssetLocker,
    ):
        self.rules = rules
        self.ledger = ledger
        self.vaults = vaults
        self.death = death
        self.attestations = attestations
        self.yield_engine = yield_engine
        self.locker = locker

    # ---- shared steps ----

    def _final_vault(self, owner: str, now: int) -> VaultRecord:
        self.death.require_final(owner, now)
        vault = self.vaults.require(owner)
        self._settle_estate(vault)
        return vault

    def _settle_estate(self, vault: VaultRecord) -> None:
        if vault.estate_settled:
            return
        amount = self.yield_engine.settle_estate(vault.owner, vault.death_timestamp)
        if amount > 0:
            vault.add_locked(AssetClass.YIELD, amount)
        vault.estate_settled = True

    def resolve_recipient(self, entry: Beneficiary) -> str:
        """Recipient, or the contingent when the recipient is attested dead"""
        if entry.contingent is not None and self.attestations.is_deceased(entry.recipient):
            return entry.contingent
        return entry.recipient

    def _attested_age(self, identity: str, now: int) -> Optional[int]:
        if not self.attestations.is_verified(identity):
            return None
        return self.attestations.age_of(identity, now)

    def _check_release(self, vault: VaultRecord, index: int, entry: Beneficiary, now: int) -> None:
        final_at = self.death.finalized_at(vault.owner)
        if now < final_at + entry.release_delay:
            raise VestingLocked(
                f"Beneficiary {index} unlocks at {final_at + entry.release_delay}",
                details={"unlocks_at": final_at + entry.release_delay},
            )
        if entry.is_conditional and not entry.condition_satisfied:
            raise ConditionNotMet(
                f"Condition for beneficiary {index} not attested: {entry.condition}"
            )

    def _open(self, vault: VaultRecord, index: int, caller: str, now: int) -> Payout:
        """Flag the entry and compute its share of every locked asset class.

        Entries with a vesting schedule receive the share as their entitlement.
        Nothing is transferred here; see `_hand_over`.
        """
        entry = vault.entry(index)
        if entry.claimed:
            raise AlreadyClaimed(f"Beneficiary {index} of {short(vault.owner)} already claimed")
        self._check_release(vault, index, entry, now)

        entry.claimed = True
        entry.claimed_by = caller
        entry.claimed_at = now

        shares = {}
        for asset in FUNGIBLE_CLASSES:
            amount = entry.share_of(vault.locked_amount(asset))
            if amount > 0:
                shares[asset.value] = amount

        if entry.vesting is not None:
            entry.vesting.entitlement = dict(shares)

        logger.info("Beneficiary %d of %s opened by %s: %s", index, short(vault.owner), short(caller), shares)
        return shares

    def _hand_over(
        self,
        vault: VaultRecord,
        entry: Beneficiary,
        paid: Payout,
        memo: str,
        opened: bool,
    ) -> int:
        """Transfer `paid`, then the entry's assets if this call opened it.

        Runs after every record update of the call, as transfers notify
        receiver hooks. Returns the number of released assets.
        """
        recipient = self.resolve_recipient(entry)
        self._pay(recipient, paid, memo)
        if not opened:
            return 0
        released = self.locker.release_for(vault.owner, entry.recipient, recipient)
        if released:
            logger.info("%d assets of %s released to %s", len(released), short(vault.owner), short(recipient))
        return len(released)

    def _pay(self, recipient: str, amounts: Payout, memo: str) -> None:
        for asset, amount in amounts.items():
            if amount > 0:
                self.ledger.transfer(AssetClass(asset), ESCROW, recipient, amount, memo)

    def _draw(self, schedule: VestingSchedule, amount: int) -> Payout:
        """Take `amount` from the entitlement, proportionally across classes"""
        total = schedule.remaining
        amount = min(amount, total)
        if amount <= 0:
            return {}

        drawn = {asset: amount * held // total for asset, held in schedule.entitlement.items()}
        shortfall = amount - sum(drawn.values())
        for asset, held in schedule.entitlement.items():
            if shortfall == 0:
                break
            extra = min(shortfall, held - drawn[asset])
            drawn[asset] += extra
            shortfall -= extra

        for asset, value in drawn.items():
            schedule.entitlement[asset] -= value
        schedule.released += amount
        return {asset: value for asset, value in drawn.items() if value > 0}

    def _vesting_entry(self, vault: VaultRecord, index: int) -> Tuple[Beneficiary, VestingSchedule]:
        entry = vault.entry(index)
        if entry.vesting is None:
            raise VestingNotConfigured(f"Beneficiary {index} has no vesting schedule")
        return entry, entry.vesting

    def _is_guardian(self, entry: Beneficiary, caller: str) -> bool:
        guardian = entry.vesting.guardian if entry.vesting and entry.vesting.guardian else entry.guardian
        return guardian is not None and caller == guardian

    # ---- beneficiary calls ----

    def claim_inheritance(self, caller: str, owner: str, index: int, now: int) -> dict:
        """Open an entry; pay it out unless a vesting schedule holds it back"""
        vault = self._final_vault(owner, now)
        entry = vault.entry(index)
        if caller != self.resolve_recipient(entry):
            raise InvalidBeneficiary(
                f"{short(caller)} is not beneficiary {index} of {short(owner)}"
            )

        shares = self._open(vault, index, caller, now)
        paid, memo = {}, "inheritance"
        if entry.vesting is None:
            paid = dict(shares)
        elif entry.vesting.is_full_access_age(self._attested_age(self.resolve_recipient(entry), now)):
            paid, memo = self._release_free(entry.vesting), "full access"

        released = self._hand_over(vault, entry, paid, memo, opened=True)
        return {
            "owner": owner,
            "index": index,
            "share": shares,
            "paid": paid,
            "assets_released": released,
            "vesting": entry.vesting is not None,
        }

    def _release_free(self, schedule: VestingSchedule) -> Payout:
        drawn = self._draw(schedule, schedule.free)
        schedule.full_access_claimed = True
        return drawn

    def claim_monthly_allowance(self, caller: str, owner: str, index: int, now: int) -> Payout:
        """Draw one period's allowance, by the recipient or their guardian"""
        vault = self._final_vault(owner, now)
        entry, schedule = self._vesting_entry(vault, index)
        if schedule.monthly_allowance <= 0:
            raise VestingNotConfigured(f"Beneficiary {index} has no monthly allowance")

        recipient = self.resolve_recipient(entry)
        by_guardian = self._is_guardian(entry, caller)
        if not by_guardian:
            if caller != recipient:
                raise InvalidBeneficiary(f"{short(caller)} cannot draw the allowance of beneficiary {index}")
            age = self._attested_age(recipient, now)
            if age is None or age < self.rules.min_age:
                raise AgeRestriction(
                    f"Beneficiary must be at least {self.rules.min_age} to draw the allowance",
                    details={"age": age},
                )

        opened = not entry.claimed
        if opened:
            self._open(vault, index, caller, now)

        if schedule.last_allowance_time is not None:
            due_at = schedule.last_allowance_time + self.rules.allowance_period
            if now < due_at:
                raise AllowanceNotDue(f"Next allowance due at {due_at}", details={"due_at": due_at})

        amount = min(schedule.monthly_allowance, schedule.free)
        if amount == 0:
            raise NoFundsAvailable(f"No unreserved funds left for beneficiary {index}")

        drawn = self._draw(schedule, amount)
        schedule.last_allowance_time = now
        if by_guardian:
            schedule.guardian_withdrawals += amount
        self._hand_over(vault, entry, drawn, "monthly allowance", opened)

        logger.info("Allowance of %d released to beneficiary %d of %s", amount, index, short(owner))
        return drawn

    def claim_full_access(self, caller: str, owner: str, index: int, now: int) -> Payout:
        """Release every unreserved unit once the recipient reaches full access age"""
        vault = self._final_vault(owner, now)
        entry, schedule = self._vesting_entry(vault, index)
        recipient = self.resolve_recipient(entry)
        if caller != recipient:
            raise InvalidBeneficiary(f"{short(caller)} is not beneficiary {index} of {short(owner)}")

        age = self._attested_age(recipient, now)
        if not schedule.is_full_access_age(age):
            raise AgeRestriction(
                f"Full access opens at age {schedule.full_access_age}",
                details={"age": age, "full_access_age": schedule.full_access_age},
            )

        opened = not entry.claimed
        if opened:
            self._open(vault, index, caller, now)
        elif schedule.full_access_claimed:
            raise AlreadyClaimed(f"Full access already released for beneficiary {index}")

        if schedule.free == 0:
            raise NoFundsAvailable(f"No unreserved funds left for beneficiary {index}")

        drawn = self._release_free(schedule)
        self._hand_over(vault, entry, drawn, "full access", opened)
        logger.info("Full access released to beneficiary %d of %s", index, short(owner))
        return drawn

    def claim_milestone(self, caller: str, owner: str, index: int, milestone_index: int, now: int) -> Payout:
        """Release the amount reserved for an achieved milestone"""
        vault = self._final_vault(owner, now)
        entry, schedule = self._vesting_entry(vault, index)
        recipient = self.resolve_recipient(entry)
        if caller != recipient and not self._is_guardian(entry, caller):
            raise InvalidBeneficiary(f"{short(caller)} cannot claim milestones of beneficiary {index}")

        milestone = schedule.milestone(milestone_index)
        if not milestone.achieved:
            raise MilestoneNotAchieved(f"Milestone {milestone_index} ({milestone.description}) not achieved")
        if milestone.claimed:
            raise AlreadyClaimed(f"Milestone {milestone_index} already claimed")

        opened = not entry.claimed
        if opened:
            self._open(vault, index, caller, now)

        milestone.claimed = True
        drawn = self._draw(schedule, milestone.amount)
        self._hand_over(vault, entry, drawn, "milestone", opened)

        logger.info("Milestone %d of beneficiary %d of %s released", milestone_index, index, short(owner))
        return drawn
