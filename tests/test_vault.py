import unittest

from sarcophagus import UNIT, AssetClass, IdentityKey, VestingParams, WithdrawalKind
from sarcophagus.errors import (
    DeathAlreadyVerified,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    InvalidAssetClass,
    InvalidBeneficiary,
    InvalidBeneficiaryCount,
    InvalidPercentage,
    NotVerified,
    ProtocolPaused,
    RateLimitExceeded,
    SarcophagusAlreadyExists,
    SarcophagusNotExists,
    TotalPercentageNot100,
    WithdrawalLocked,
)
from sarcophagus.identity import ZERO_IDENTITY
from sarcophagus.ledger import ESCROW, TREASURY
from sarcophagus.rules import DAY, YEAR

from support import ProtocolTestCase


class TestVaultCreation(ProtocolTestCase):

    def test_vault_creation(self):
        """Test vault creation and validation"""
        vault = self.create_vault()

        self.assertEqual(len(vault.beneficiaries), 2)
        self.assertEqual(vault.beneficiaries[0].percentage_bps, 6000)
        self.assertEqual(vault.deposit_value, 0)
        self.assertFalse(vault.deceased)
        self.assertEqual(vault.created_at, self.clock())
        self.assertTrue(vault.is_beneficiary(self.alice))
        self.assertFalse(vault.is_beneficiary(self.carol))

    def test_percentage_invariant(self):
        """Creation succeeds iff shares sum to exactly 10000"""
        for shares in [(6000, 3999), (6000, 4001), (5000, 5000, 1), (10_000, 0)]:
            with self.subTest(shares=shares):
                beneficiaries = [self.alice, self.bob, self.carol][:len(shares)]
                with self.assertRaises(TotalPercentageNot100):
                    self.create_vault(beneficiaries, shares)
                self.assertFalse(self.protocol.vaults.exists(self.owner))

        self.create_vault([self.alice, self.bob, self.carol], (3333, 3333, 3334))
        self.assertTrue(self.protocol.vaults.exists(self.owner))

    def test_requires_age_attestation(self):
        stranger = IdentityKey().identity
        with self.assertRaises(NotVerified):
            self.protocol.create_vault(stranger, [self.alice], [10_000])

    def test_create_once(self):
        self.create_vault()
        with self.assertRaises(SarcophagusAlreadyExists):
            self.create_vault()

    def test_beneficiary_count(self):
        with self.assertRaises(InvalidBeneficiaryCount):
            self.create_vault([], [])

        too_many = [IdentityKey().identity for _ in range(6)]
        with self.assertRaises(InvalidBeneficiaryCount):
            self.create_vault(too_many, [2000, 2000, 2000, 2000, 1000, 1000])

        with self.assertRaises(InvalidBeneficiaryCount):
            self.create_vault([self.alice, self.bob], [10_000])

    def test_invalid_beneficiaries(self):
        with self.assertRaises(InvalidAddress):
            self.create_vault([ZERO_IDENTITY, self.bob])
        with self.assertRaises(InvalidAddress):
            self.create_vault(["not-a-key", self.bob])
        with self.assertRaises(InvalidBeneficiary):
            self.create_vault([self.owner, self.bob])
        with self.assertRaises(InvalidBeneficiary):
            self.create_vault([self.alice, self.alice])

    def test_vesting_parameters(self):
        vault = self.create_vault(vesting=[
            None,
            VestingParams(full_access_age=25, monthly_allowance=5 * UNIT, guardian=self.alice),
        ])

        self.assertIsNone(vault.beneficiaries[0].vesting)
        schedule = vault.beneficiaries[1].vesting
        self.assertEqual(schedule.full_access_age, 25)
        self.assertEqual(schedule.guardian, self.alice)

    def test_age_vesting_setup(self):
        self.create_vault()
        self.protocol.set_age_vesting(self.owner, 1, 21, 2 * UNIT, self.alice)
        index = self.protocol.add_milestone(self.owner, 1, "graduation", 10 * UNIT)

        schedule = self.protocol.get_vesting(self.owner, 1)
        self.assertEqual(index, 0)
        self.assertEqual(schedule.full_access_age, 21)
        self.assertEqual(schedule.reserved, 10 * UNIT)

        with self.assertRaises(InvalidAmount):
            self.protocol.add_milestone(self.owner, 1, "empty", 0)


class TestDeposits(ProtocolTestCase):

    def setUp(self):
        super().setUp()
        self.create_vault()

    def test_deposit(self):
        """Test deposit moves funds to escrow and awards the bonus"""
        self.fund(self.owner, 500 * UNIT)
        self.fund(self.owner, 200 * UNIT, AssetClass.ENERGY)

        result = self.protocol.deposit(self.owner, {"native": 300 * UNIT, AssetClass.ENERGY: 200 * UNIT})

        vault = self.protocol.get_vault(self.owner)
        self.assertEqual(result["total"], 500 * UNIT)
        self.assertEqual(vault.locked_amount(AssetClass.NATIVE), 300 * UNIT)
        self.assertEqual(vault.locked_amount(AssetClass.ENERGY), 200 * UNIT)
        self.assertEqual(self.balance(ESCROW), 300 * UNIT)
        self.assertEqual(self.balance(self.owner), 200 * UNIT)
        self.assertEqual(self.balance(self.owner, AssetClass.YIELD), 50 * UNIT)

    def test_deposit_validation(self):
        self.fund(self.owner, 500 * UNIT)

        with self.assertRaises(InvalidAmount):
            self.protocol.deposit(self.owner, {AssetClass.NATIVE: 99 * UNIT})
        with self.assertRaises(InvalidAmount):
            self.protocol.deposit(self.owner, {AssetClass.NATIVE: 200 * UNIT, AssetClass.ENERGY: -1})
        with self.assertRaises(InvalidAssetClass):
            self.protocol.deposit(self.owner, {AssetClass.YIELD: 200 * UNIT})
        with self.assertRaises(InvalidAssetClass):
            self.protocol.deposit(self.owner, {"gold": 200 * UNIT})
        with self.assertRaises(SarcophagusNotExists):
            self.protocol.deposit(self.alice, {AssetClass.NATIVE: 200 * UNIT})

    def test_insufficient_balance_leaves_state_unchanged(self):
        self.fund(self.owner, 500 * UNIT)

        with self.assertRaises(InsufficientBalance):
            self.protocol.deposit(self.owner, {AssetClass.NATIVE: 400 * UNIT, AssetClass.ENERGY: 100 * UNIT})

        vault = self.protocol.get_vault(self.owner)
        self.assertEqual(vault.deposit_value, 0)
        self.assertEqual(vault.deposit_log, [])
        self.assertEqual(self.balance(self.owner), 500 * UNIT)
        self.assertEqual(self.balance(ESCROW), 0)
        self.assertEqual(self.balance(self.owner, AssetClass.YIELD), 0)

    def test_rate_limiting(self):
        """Deposits up to the ceiling succeed; the one exceeding it is rejected"""
        self.fund(self.owner, 200_000 * UNIT)

        self.protocol.deposit(self.owner, {AssetClass.NATIVE: 60_000 * UNIT})
        self.clock.advance(3600)
        self.protocol.deposit(self.owner, {AssetClass.NATIVE: 40_000 * UNIT})
        with self.assertRaises(RateLimitExceeded):
            self.protocol.deposit(self.owner, {AssetClass.NATIVE: 100 * UNIT})

        self.clock.advance(DAY)
        self.protocol.deposit(self.owner, {AssetClass.NATIVE: 100 * UNIT})
        self.assertEqual(self.protocol.get_vault(self.owner).deposit_value, 100_100 * UNIT)

    def test_rolling_window(self):
        self.fund(self.owner, 200_000 * UNIT)

        self.protocol.deposit(self.owner, {AssetClass.NATIVE: 60_000 * UNIT})
        self.clock.advance(DAY - 3600)
        self.protocol.deposit(self.owner, {AssetClass.NATIVE: 40_000 * UNIT})
        self.clock.advance(3600)

        # first deposit left the window, the second is still inside it
        self.protocol.deposit(self.owner, {AssetClass.NATIVE: 60_000 * UNIT})
        with self.assertRaises(RateLimitExceeded):
            self.protocol.deposit(self.owner, {AssetClass.NATIVE: 100 * UNIT})

    def test_deposit_after_death(self):
        self.deposit()
        self.confirm_death()
        self.fund(self.owner, 100 * UNIT)
        with self.assertRaises(DeathAlreadyVerified):
            self.protocol.deposit(self.owner, {AssetClass.NATIVE: 100 * UNIT})

    def test_paused(self):
        self.fund(self.owner, 100 * UNIT)
        self.protocol.pause(self.admin)
        with self.assertRaises(ProtocolPaused):
            self.protocol.deposit(self.owner, {AssetClass.NATIVE: 100 * UNIT})
        self.protocol.unpause(self.admin)
        self.protocol.deposit(self.owner, {AssetClass.NATIVE: 100 * UNIT})


class TestWithdrawals(ProtocolTestCase):

    def setUp(self):
        super().setUp()
        self.create_vault()
        self.deposit(1_000 * UNIT)

    def test_locked_period(self):
        self.clock.advance(7 * YEAR - DAY)
        with self.assertRaises(WithdrawalLocked):
            self.protocol.withdraw(self.owner, WithdrawalKind.EMERGENCY)
        with self.assertRaises(WithdrawalLocked):
            self.protocol.withdraw(self.owner, "full")

    def test_emergency_withdrawal(self):
        self.clock.advance(7 * YEAR)
        result = self.protocol.withdraw(self.owner, WithdrawalKind.EMERGENCY)

        self.assertEqual(result["paid"], 100 * UNIT)
        self.assertEqual(result["penalty"], 900 * UNIT)
        self.assertEqual(self.balance(self.owner), 100 * UNIT)
        self.assertEqual(self.balance(TREASURY), 900 * UNIT)
        self.assertEqual(self.protocol.get_vault(self.owner).deposit_value, 0)
        self.assertEqual(self.protocol.get_stake(self.owner).staked_value, 0)

    def test_partial_withdrawal(self):
        self.clock.advance(15 * YEAR)
        with self.assertRaises(InvalidPercentage):
            self.protocol.withdraw(self.owner, WithdrawalKind.PARTIAL, 5000)

        result = self.protocol.withdraw(self.owner, WithdrawalKind.PARTIAL, 3000)
        self.assertEqual(result["paid"], 195 * UNIT)
        self.assertEqual(result["penalty"], 105 * UNIT)
        self.assertEqual(self.protocol.get_vault(self.owner).deposit_value, 700 * UNIT)

    def test_withdraw_after_death(self):
        self.clock.advance(15 * YEAR)
        self.confirm_death()
        with self.assertRaises(DeathAlreadyVerified):
            self.protocol.withdraw(self.owner, WithdrawalKind.FULL)

    def test_yield_token_lock(self):
        """Bonus tokens can be locked for inheritance and withdrawn with a fee"""
        self.assertEqual(self.balance(self.owner, AssetClass.YIELD), 100 * UNIT)

        self.protocol.lock_yield_tokens(self.owner, 100 * UNIT)
        self.assertEqual(self.protocol.get_vault(self.owner).locked_amount(AssetClass.YIELD), 100 * UNIT)

        result = self.protocol.withdraw_yield_tokens(self.owner, 40 * UNIT)
        self.assertEqual(result["fee"], 40 * UNIT * 50 // 10_000)
        self.assertEqual(self.balance(self.owner, AssetClass.YIELD), 40 * UNIT - result["fee"])
        self.assertEqual(self.balance(TREASURY, AssetClass.YIELD), result["fee"])

        with self.assertRaises(InsufficientBalance):
            self.protocol.withdraw_yield_tokens(self.owner, 61 * UNIT)

    def test_locked_yield_not_staked(self):
        self.protocol.lock_yield_tokens(self.owner, 100 * UNIT)
        self.assertEqual(self.protocol.get_stake(self.owner).staked_value, 1_000 * UNIT)


if __name__ == '__main__':
    unittest.main()
