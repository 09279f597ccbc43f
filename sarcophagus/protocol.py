"""
Protocol entry points.

`SarcophagusProtocol` wires the components together and exposes the oracle,
owner, beneficiary and administrator interfaces. Every mutating call runs
inside the per-owner re-entry guard and an atomic section: either it
completes, or every component is restored to its state before the call.

All calls accept an explicit `now` (seconds since the epoch) and fall back to
the injected clock.
"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Union

from .attestation import AttestationRegistry
from .clock import TimeProvider, resolve_now, system_time
from .death import DeathConsensus, DeathRecord, DeathStatus
from .distribution import DistributionEngine, Payout
from .errors import (
    AlreadyConfirmed,
    DeathAlreadyVerified,
    InsufficientBalance,
    InvalidAge,
    InvalidAmount,
    InvalidAssetClass,
    InvalidMilestone,
    InvalidPercentage,
    NoFundsAvailable,
    NotVerified,
    RateLimitExceeded,
    SarcophagusAlreadyExists,
    VestingNotConfigured,
    WithdrawalLocked,
)
from .guard import ReentrancyGuard, atomic
from .identity import require_identity, short
from .ledger import (
    DEPOSIT_CLASSES,
    ESCROW,
    TREASURY,
    AssetClass,
    CollectibleRegistry,
    Ledger,
    coerce_asset,
)
from .locker import AssetLocker, LockedAsset
from .registry import ConfigStore, Role
from .rules import BASIS_POINTS, ProtocolRules, WithdrawalKind
from .vault import (
    Beneficiary,
    Milestone,
    VaultBook,
    VaultRecord,
    VestingParams,
    VestingSchedule,
    build_beneficiaries,
)
from .yield_engine import StakeRecord, YieldEngine

logger = logging.getLogger(__name__)

CONFIG_GUARD_KEY = "sarcophagus:config"


class SarcophagusProtocol:
    """Inheritance vault engine"""

    def __init__(
        self,
        admin: str,
        rules: Optional[ProtocolRules] = None,
        clock: TimeProvider = system_time,
    ):
        self.rules = rules or ProtocolRules.standard()
        self.clock = clock
        self.guard = ReentrancyGuard()

        self.config = ConfigStore(admin, self.rules.global_max_asset_value)
        self.ledger = Ledger()
        self.collectibles = CollectibleRegistry(self.ledger)
        self.attestations = AttestationRegistry(self.rules)
        self.vaults = VaultBook()
        self.death = DeathConsensus(self.rules, self.attestations)
        self.yield_engine = YieldEngine(self.rules, self.ledger)
        self.locker = AssetLocker(self.config, self.collectibles)
        self._wire()

    def _wire(self) -> None:
        self.distribution = DistributionEngine(
            self.rules,
            self.ledger,
            self.vaults,
            self.death,
            self.attestations,
            self.yield_engine,
            self.locker,
        )

    def _components(self):
        return (
            self.config,
            self.ledger,
            self.collectibles,
            self.attestations,
            self.vaults,
            self.death,
            self.yield_engine,
            self.locker,
        )

    def now(self, now: Optional[int] = None) -> int:
        return resolve_now(now, self.clock)

    @contextmanager
    def _transaction(self, key: str, operation: str, pausable: bool = True) -> Iterator[None]:
        if pausable:
            self.config.require_not_paused(operation)
        with self.guard.enter(key, operation), atomic(self._components()):
            yield

    def _require_oracle(self, oracle: str, operation: str) -> None:
        self.config.require_role(Role.ORACLE, oracle, operation)

    def _require_alive_vault(self, owner: str) -> VaultRecord:
        vault = self.vaults.require(owner)
        if vault.deceased:
            raise DeathAlreadyVerified(f"Vault of {short(owner)} is closed by a death confirmation")
        return vault

    def _sync_stake(self, vault: VaultRecord, now: int) -> StakeRecord:
        staked = vault.deposit_value + self.locker.total_value(vault.owner)
        return self.yield_engine.sync(vault.owner, staked, now)

    # ==================== Oracle interface ====================

    def verify_age(self, oracle: str, user: str, age: int, proof_ref: str = "", now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(user, "verify_age"):
            self._require_oracle(oracle, "verify_age")
            self.attestations.record_age(oracle, user, age, proof_ref, now)

    def confirm_death(
        self,
        oracle: str,
        owner: str,
        death_timestamp: Optional[int] = None,
        now: Optional[int] = None,
    ) -> DeathStatus:
        now = self.now(now)
        with self._transaction(owner, "confirm_death"):
            self._require_oracle(oracle, "confirm_death")
            vault = self.vaults.require(owner)
            record = self.death.confirm(oracle, owner, now, death_timestamp)
            if record.count >= self.rules.required_confirmations:
                vault.deceased = True
                vault.death_timestamp = record.death_timestamp
                vault.age_at_death = record.age_at_death
            return self.death.status(owner, now)

    def attest_death(self, oracle: str, user: str, proof_ref: str = "", now: Optional[int] = None) -> None:
        """Attest the death of any identity, used for contingent routing"""
        now = self.now(now)
        with self._transaction(user, "attest_death"):
            self._require_oracle(oracle, "attest_death")
            self.attestations.record_death(oracle, user, proof_ref, now)

    def achieve_milestone(
        self,
        oracle: str,
        owner: str,
        beneficiary_index: int,
        milestone_index: int,
        proof_ref: str = "",
        now: Optional[int] = None,
    ) -> Milestone:
        now = self.now(now)
        with self._transaction(owner, "achieve_milestone"):
            self._require_oracle(oracle, "achieve_milestone")
            schedule = self._schedule(owner, beneficiary_index)
            milestone = schedule.milestone(milestone_index)
            if milestone.achieved:
                raise AlreadyConfirmed(f"Milestone {milestone_index} already achieved")
            milestone.achieved = True
            milestone.proof_ref = proof_ref
            logger.info(
                "Milestone %d of beneficiary %d of %s achieved",
                milestone_index,
                beneficiary_index,
                short(owner),
            )
            return milestone

    def satisfy_condition(
        self,
        oracle: str,
        owner: str,
        beneficiary_index: int,
        proof_ref: str = "",
        now: Optional[int] = None,
    ) -> Beneficiary:
        now = self.now(now)
        with self._transaction(owner, "satisfy_condition"):
            self._require_oracle(oracle, "satisfy_condition")
            entry = self.vaults.require(owner).entry(beneficiary_index)
            if not entry.is_conditional:
                raise VestingNotConfigured(f"Beneficiary {beneficiary_index} has no release condition")
            entry.condition_satisfied = True
            entry.condition_proof = proof_ref
            return entry

    # ==================== Owner interface ====================

    def create_vault(
        self,
        owner: str,
        beneficiaries: Sequence[str],
        percentages: Sequence[int],
        vesting: Optional[Sequence[Optional[VestingParams]]] = None,
        now: Optional[int] = None,
    ) -> VaultRecord:
        now = self.now(now)
        with self._transaction(owner, "create_vault"):
            require_identity(owner, "owner")
            if not self.attestations.is_verified(owner):
                raise NotVerified(f"{short(owner)} needs an age attestation first")
            if self.vaults.exists(owner):
                raise SarcophagusAlreadyExists(f"Vault for {short(owner)} already exists")
            entries = build_beneficiaries(owner, beneficiaries, percentages, vesting, self.rules)
            return self.vaults.add(VaultRecord(owner, entries, created_at=now))

    def deposit(
        self,
        owner: str,
        amounts: Mapping[Union[AssetClass, str], int],
        now: Optional[int] = None,
    ) -> dict:
        now = self.now(now)
        with self._transaction(owner, "deposit"):
            vault = self._require_alive_vault(owner)

            parsed: Dict[AssetClass, int] = {}
            for asset, amount in amounts.items():
                asset = coerce_asset(asset)
                if asset not in DEPOSIT_CLASSES:
                    raise InvalidAssetClass(f"{asset.value} cannot be deposited")
                if amount < 0:
                    raise InvalidAmount(f"Negative {asset.value} amount {amount}")
                parsed[asset] = parsed.get(asset, 0) + int(amount)

            total = sum(parsed.values())
            if total < self.rules.min_deposit:
                raise InvalidAmount(
                    f"Deposit {total} below minimum {self.rules.min_deposit}",
                    details={"minimum": self.rules.min_deposit},
                )

            window_total = vault.window_total(now, self.rules.rate_limit_window)
            allowed, reason = self.rules.check_rate_limit(window_total, total)
            if not allowed:
                logger.warning("Deposit by %s rate limited: %s", short(owner), reason)
                raise RateLimitExceeded(
                    reason,
                    details={"window_total": window_total, "amount": total},
                )

            for asset, amount in parsed.items():
                if amount > 0:
                    self.ledger.transfer(asset, owner, ESCROW, amount, "deposit")
                    vault.add_locked(asset, amount)

            vault.total_deposited += total
            vault.log_deposit(now, total, self.rules.rate_limit_window)
            self._sync_stake(vault, now)
            bonus = self.yield_engine.award_initial_bonus(owner, total)

            logger.info("Deposit of %d by %s", total, short(owner))
            return {
                "deposited": {asset.value: amount for asset, amount in parsed.items()},
                "total": total,
                "bonus": bonus,
            }

    def withdraw(
        self,
        owner: str,
        kind: Union[WithdrawalKind, str],
        portion_bps: Optional[int] = None,
        now: Optional[int] = None,
    ) -> dict:
        """Owner exit under the tiered lock schedule; penalties go to the treasury"""
        now = self.now(now)
        kind = WithdrawalKind(kind)
        with self._transaction(owner, "withdraw"):
            vault = self._require_alive_vault(owner)

            allowed, reason = self.rules.check_withdrawal(kind, vault.created_at, now, portion_bps)
            if not allowed:
                if now < self.rules.withdrawal_opens_at(kind, vault.created_at):
                    raise WithdrawalLocked(reason)
                raise InvalidPercentage(reason)

            fraction = portion_bps if kind == WithdrawalKind.PARTIAL else BASIS_POINTS
            net_total = penalty_total = 0
            for asset in DEPOSIT_CLASSES:
                amount = vault.locked_amount(asset) * fraction // BASIS_POINTS
                if amount == 0:
                    continue
                penalty = self.rules.calculate_penalty(amount, kind)
                vault.remove_locked(asset, amount)
                if penalty > 0:
                    self.ledger.transfer(asset, ESCROW, TREASURY, penalty, f"{kind.value} penalty")
                if amount > penalty:
                    self.ledger.transfer(asset, ESCROW, owner, amount - penalty, f"{kind.value} withdrawal")
                net_total += amount - penalty
                penalty_total += penalty

            if net_total + penalty_total == 0:
                raise NoFundsAvailable(f"Vault of {short(owner)} holds no deposits")

            vault.withdrawn += net_total
            vault.penalties_paid += penalty_total
            self._sync_stake(vault, now)

            logger.info(
                "%s withdrawal by %s: %d paid, %d penalty",
                kind.value,
                short(owner),
                net_total,
                penalty_total,
            )
            return {"kind": kind.value, "paid": net_total, "penalty": penalty_total}

    def lock_yield_tokens(self, owner: str, amount: int, now: Optional[int] = None) -> int:
        now = self.now(now)
        with self._transaction(owner, "lock_yield_tokens"):
            vault = self._require_alive_vault(owner)
            if amount <= 0:
                raise InvalidAmount(f"Amount must be positive, got {amount}")
            self.ledger.transfer(AssetClass.YIELD, owner, ESCROW, amount, "yield lock")
            vault.add_locked(AssetClass.YIELD, amount)
            return vault.locked_amount(AssetClass.YIELD)

    def withdraw_yield_tokens(self, owner: str, amount: int, now: Optional[int] = None) -> dict:
        now = self.now(now)
        with self._transaction(owner, "withdraw_yield_tokens"):
            vault = self._require_alive_vault(owner)
            if amount <= 0:
                raise InvalidAmount(f"Amount must be positive, got {amount}")
            locked = vault.locked_amount(AssetClass.YIELD)
            if amount > locked:
                raise InsufficientBalance(
                    f"Only {locked} yield tokens locked",
                    details={"locked": locked, "amount": amount},
                )
            fee = amount * self.rules.yield_withdrawal_fee_bps // BASIS_POINTS
            vault.remove_locked(AssetClass.YIELD, amount)
            if fee > 0:
                self.ledger.transfer(AssetClass.YIELD, ESCROW, TREASURY, fee, "yield withdrawal fee")
            self.ledger.transfer(AssetClass.YIELD, ESCROW, owner, amount - fee, "yield withdrawal")
            return {"paid": amount - fee, "fee": fee}

    def lock_asset(
        self,
        owner: str,
        collection: str,
        token_id: int,
        declared_value: int,
        beneficiary: str,
        now: Optional[int] = None,
    ) -> LockedAsset:
        now = self.now(now)
        with self._transaction(owner, "lock_asset"):
            vault = self._require_alive_vault(owner)
            entry = self.locker.lock(vault, collection, token_id, declared_value, beneficiary, now)
            self._sync_stake(vault, now)
            return entry

    def unlock_asset(self, owner: str, collection: str, token_id: int, now: Optional[int] = None) -> LockedAsset:
        now = self.now(now)
        with self._transaction(owner, "unlock_asset"):
            vault = self._require_alive_vault(owner)
            entry = self.locker.unlock(owner, collection, token_id)
            self._sync_stake(vault, now)
            return entry

    def reassign_beneficiary(
        self,
        owner: str,
        collection: str,
        token_id: int,
        beneficiary: str,
        now: Optional[int] = None,
    ) -> LockedAsset:
        now = self.now(now)
        with self._transaction(owner, "reassign_beneficiary"):
            vault = self._require_alive_vault(owner)
            return self.locker.reassign(vault, collection, token_id, beneficiary)

    def challenge_death(self, owner: str, now: Optional[int] = None) -> DeathRecord:
        now = self.now(now)
        with self._transaction(owner, "challenge_death"):
            vault = self.vaults.require(owner)
            record = self.death.challenge(owner, now)
            vault.deceased = False
            vault.death_timestamp = None
            vault.age_at_death = None
            self.attestations.record_activity(owner, owner, "CHALLENGE", "Death confirmation challenged", now)
            return record

    def claim_pending_rewards(self, owner: str, now: Optional[int] = None) -> int:
        now = self.now(now)
        with self._transaction(owner, "claim_pending_rewards"):
            self._require_alive_vault(owner)
            return self.yield_engine.claim(owner, now)

    def record_activity(
        self,
        caller: str,
        owner: str,
        proof_type: str,
        details: str = "",
        now: Optional[int] = None,
    ) -> None:
        now = self.now(now)
        with self._transaction(owner, "record_activity"):
            self.attestations.record_activity(caller, owner, proof_type, details, now)

    def set_emergency_contact(self, owner: str, contact: str, now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(owner, "set_emergency_contact"):
            self._require_alive_vault(owner)
            self.attestations.set_emergency_contact(owner, contact)

    def set_age_vesting(
        self,
        owner: str,
        beneficiary_index: int,
        full_access_age: int,
        monthly_allowance: int,
        guardian: Optional[str] = None,
        now: Optional[int] = None,
    ) -> VestingSchedule:
        now = self.now(now)
        with self._transaction(owner, "set_age_vesting"):
            entry = self._require_alive_vault(owner).entry(beneficiary_index)
            if not self.rules.is_valid_age(full_access_age):
                raise InvalidAge(f"Full access age {full_access_age} out of range")
            if monthly_allowance < 0:
                raise InvalidAmount(f"Negative allowance {monthly_allowance}")
            if guardian is not None:
                require_identity(guardian, "guardian")
            if entry.vesting is None:
                entry.vesting = VestingSchedule()
            entry.vesting.full_access_age = full_access_age
            entry.vesting.monthly_allowance = monthly_allowance
            entry.vesting.guardian = guardian
            return entry.vesting

    def add_milestone(
        self,
        owner: str,
        beneficiary_index: int,
        description: str,
        amount: int,
        now: Optional[int] = None,
    ) -> int:
        """Append a milestone; returns its index"""
        now = self.now(now)
        with self._transaction(owner, "add_milestone"):
            entry = self._require_alive_vault(owner).entry(beneficiary_index)
            if not description:
                raise InvalidMilestone("Milestone needs a description")
            if amount <= 0:
                raise InvalidAmount(f"Milestone amount must be positive, got {amount}")
            if entry.vesting is None:
                entry.vesting = VestingSchedule()
            entry.vesting.milestones.append(Milestone(description, amount))
            return len(entry.vesting.milestones) - 1

    # ==================== Beneficiary interface ====================

    def claim_inheritance(self, caller: str, owner: str, beneficiary_index: int, now: Optional[int] = None) -> dict:
        now = self.now(now)
        with self._transaction(owner, "claim_inheritance"):
            return self.distribution.claim_inheritance(caller, owner, beneficiary_index, now)

    def claim_monthly_allowance(
        self,
        caller: str,
        owner: str,
        beneficiary_index: int,
        now: Optional[int] = None,
    ) -> Payout:
        now = self.now(now)
        with self._transaction(owner, "claim_monthly_allowance"):
            return self.distribution.claim_monthly_allowance(caller, owner, beneficiary_index, now)

    def claim_full_access(self, caller: str, owner: str, beneficiary_index: int, now: Optional[int] = None) -> Payout:
        now = self.now(now)
        with self._transaction(owner, "claim_full_access"):
            return self.distribution.claim_full_access(caller, owner, beneficiary_index, now)

    def claim_milestone(
        self,
        caller: str,
        owner: str,
        beneficiary_index: int,
        milestone_index: int,
        now: Optional[int] = None,
    ) -> Payout:
        now = self.now(now)
        with self._transaction(owner, "claim_milestone"):
            return self.distribution.claim_milestone(caller, owner, beneficiary_index, milestone_index, now)

    # ==================== Administrative interface ====================

    def whitelist_collection(self, caller: str, collection: str, max_value: int, now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(CONFIG_GUARD_KEY, "whitelist_collection", pausable=False):
            self.config.whitelist_collection(caller, collection, max_value, now)

    def remove_collection(self, caller: str, collection: str, now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(CONFIG_GUARD_KEY, "remove_collection", pausable=False):
            self.config.remove_collection(caller, collection, now)

    def update_global_max_asset_value(self, caller: str, value: int, now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(CONFIG_GUARD_KEY, "update_global_max_asset_value", pausable=False):
            self.config.update_global_max_asset_value(caller, value, now)

    def pause(self, caller: str, now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(CONFIG_GUARD_KEY, "pause", pausable=False):
            self.config.pause(caller, now)

    def unpause(self, caller: str, now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(CONFIG_GUARD_KEY, "unpause", pausable=False):
            self.config.unpause(caller, now)

    def grant_role(self, caller: str, role: Union[Role, str], account: str, now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(CONFIG_GUARD_KEY, "grant_role", pausable=False):
            self.config.grant_role(caller, Role(role), account, now)

    def revoke_role(self, caller: str, role: Union[Role, str], account: str, now: Optional[int] = None) -> None:
        now = self.now(now)
        with self._transaction(CONFIG_GUARD_KEY, "revoke_role", pausable=False):
            self.config.revoke_role(caller, Role(role), account, now)

    # ==================== Read interface ====================

    def _schedule(self, owner: str, beneficiary_index: int) -> VestingSchedule:
        entry = self.vaults.require(owner).entry(beneficiary_index)
        if entry.vesting is None:
            raise VestingNotConfigured(f"Beneficiary {beneficiary_index} has no vesting schedule")
        return entry.vesting

    def get_vault(self, owner: str) -> VaultRecord:
        return self.vaults.require(owner)

    def get_beneficiaries(self, owner: str) -> List[Beneficiary]:
        return list(self.vaults.require(owner).beneficiaries)

    def get_death_status(self, owner: str, now: Optional[int] = None) -> dict:
        now = self.now(now)
        record = self.death.get_record(owner)
        return {
            "status": self.death.status(owner, now).value,
            "confirmations": record.count if record else 0,
            "required": self.rules.required_confirmations,
            "challenge_window_end": self.death.window_end(record) if record else None,
            "challenge_used": record.challenge_used if record else False,
        }

    def get_stake(self, owner: str) -> Optional[StakeRecord]:
        return self.yield_engine.get_stake(owner)

    def pending_rewards(self, owner: str, now: Optional[int] = None) -> int:
        return self.yield_engine.pending_rewards(owner, self.now(now))

    def get_locked_asset(self, collection: str, token_id: int) -> Optional[LockedAsset]:
        return self.locker.get(collection, token_id)

    def total_locked_asset_value(self, owner: str) -> int:
        return self.locker.total_value(owner)

    def get_vesting(self, owner: str, beneficiary_index: int) -> Optional[VestingSchedule]:
        return self.vaults.require(owner).entry(beneficiary_index).vesting

    def balance_of(self, asset: Union[AssetClass, str], account: str) -> int:
        return self.ledger.balance_of(coerce_asset(asset), account)

    # ==================== Persistence ====================

    def to_dict(self) -> dict:
        return {
            "rules": self.rules.to_dict(),
            "config": self.config.to_dict(),
            "ledger": self.ledger.to_dict(),
            "collectibles": self.collectibles.to_dict(),
            "attestations": self.attestations.to_dict(),
            "vaults": self.vaults.to_dict(),
            "death": self.death.to_dict(),
            "yield": self.yield_engine.to_dict(),
            "locker": self.locker.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict, clock: TimeProvider = system_time) -> 'SarcophagusProtocol':
        rules = ProtocolRules.from_dict(data["rules"])
        config = ConfigStore.from_dict(data["config"])
        protocol = cls(config.members(Role.ADMIN)[0], rules, clock)
        protocol.config = config
        protocol.ledger = Ledger.from_dict(data["ledger"])
        protocol.collectibles = CollectibleRegistry.from_dict(data["collectibles"], protocol.ledger)
        protocol.attestations = AttestationRegistry.from_dict(data["attestations"], rules)
        protocol.vaults = VaultBook.from_dict(data["vaults"])
        protocol.death = DeathConsensus.from_dict(data["death"], rules, protocol.attestations)
        protocol.yield_engine = YieldEngine.from_dict(data["yield"], rules, protocol.ledger)
        protocol.locker = AssetLocker.from_dict(data["locker"], config, protocol.collectibles)
        protocol._wire()
        return protocol
