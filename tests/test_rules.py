import unittest

from sarcophagus.rules import DAY, UNIT, YEAR, ProtocolRules, WithdrawalKind


class TestProtocolRules(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.standard_rules = ProtocolRules.standard()
        self.accelerated_rules = ProtocolRules.accelerated()

    def test_standard_rules(self):
        """Test standard rule parameters"""
        rules = self.standard_rules

        self.assertEqual(rules.max_beneficiaries, 5)
        self.assertEqual(rules.required_confirmations, 3)
        self.assertEqual(rules.challenge_period, 30 * DAY)
        self.assertEqual(rules.inactivity_threshold, 180 * DAY)
        self.assertEqual(rules.min_deposit, 100 * UNIT)
        self.assertEqual(rules.max_deposit_per_window, 100_000 * UNIT)
        self.assertEqual(rules.reward_supply, 95_000_000 * UNIT)

    def test_accelerated_rules(self):
        """Test accelerated preset shortens the windows only"""
        rules = self.accelerated_rules

        self.assertEqual(rules.required_confirmations, 2)
        self.assertEqual(rules.challenge_period, DAY)
        self.assertEqual(rules.min_deposit, self.standard_rules.min_deposit)
        self.assertEqual(rules.base_daily_rate, self.standard_rules.base_daily_rate)

    def test_invalid_rules(self):
        """Test rule validation"""
        data = self.standard_rules.to_dict()

        with self.assertRaises(ValueError):
            ProtocolRules(**{**data, "required_confirmations": 0})
        with self.assertRaises(ValueError):
            ProtocolRules(**{**data, "min_age": 130})
        with self.assertRaises(ValueError):
            ProtocolRules(**{**data, "emergency_withdrawal_after": 20 * YEAR})

    def test_initial_bonus(self):
        """Test 10% bonus per deposit event"""
        self.assertEqual(self.standard_rules.initial_bonus(100 * UNIT), 10 * UNIT)
        self.assertEqual(self.standard_rules.initial_bonus(0), 0)

    def test_penalty_calculation(self):
        """Test penalty per withdrawal kind"""
        rules = self.standard_rules

        self.assertEqual(rules.calculate_penalty(1000, WithdrawalKind.EMERGENCY), 900)
        self.assertEqual(rules.calculate_penalty(1000, WithdrawalKind.PARTIAL), 350)
        self.assertEqual(rules.calculate_penalty(1000, WithdrawalKind.FULL), 200)

    def test_withdrawal_schedule(self):
        """Test the tiered lock schedule"""
        rules = self.standard_rules
        created = 1_000_000

        is_valid, reason = rules.check_withdrawal(WithdrawalKind.EMERGENCY, created, created + YEAR)
        self.assertFalse(is_valid)
        self.assertIn("locked", reason)

        is_valid, _ = rules.check_withdrawal(WithdrawalKind.EMERGENCY, created, created + 7 * YEAR)
        self.assertTrue(is_valid)

        is_valid, _ = rules.check_withdrawal(WithdrawalKind.FULL, created, created + 7 * YEAR)
        self.assertFalse(is_valid)

        is_valid, _ = rules.check_withdrawal(WithdrawalKind.FULL, created, created + 15 * YEAR)
        self.assertTrue(is_valid)

    def test_partial_withdrawal_portion(self):
        """Test partial withdrawals are capped at 30%"""
        rules = self.standard_rules
        now = 15 * YEAR

        self.assertTrue(rules.check_withdrawal(WithdrawalKind.PARTIAL, 0, now, 3000)[0])
        self.assertFalse(rules.check_withdrawal(WithdrawalKind.PARTIAL, 0, now, 5000)[0])
        self.assertFalse(rules.check_withdrawal(WithdrawalKind.PARTIAL, 0, now, None)[0])

    def test_rate_limit(self):
        """Test rolling window ceiling"""
        rules = self.standard_rules
        ceiling = rules.max_deposit_per_window

        self.assertTrue(rules.check_rate_limit(0, ceiling)[0])
        self.assertTrue(rules.check_rate_limit(ceiling - 100, 100)[0])
        is_valid, reason = rules.check_rate_limit(ceiling - 100, 101)
        self.assertFalse(is_valid)
        self.assertIn("headroom", reason)

    def test_age_bounds(self):
        self.assertTrue(self.standard_rules.is_valid_age(18))
        self.assertTrue(self.standard_rules.is_valid_age(120))
        self.assertFalse(self.standard_rules.is_valid_age(17))
        self.assertFalse(self.standard_rules.is_valid_age(121))

    def test_serialization(self):
        data = self.accelerated_rules.to_dict()
        self.assertEqual(ProtocolRules.from_dict(data), self.accelerated_rules)


if __name__ == '__main__':
    unittest.main()
