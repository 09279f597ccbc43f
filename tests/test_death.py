import unittest

from sarcophagus import DeathStatus, IdentityKey
from sarcophagus.errors import (
    AccessDenied,
    AlreadyConfirmed,
    ChallengeAlreadyUsed,
    ChallengePeriodEnded,
    DeathAlreadyVerified,
    DeathNotVerified,
    InChallengePeriod,
    InvalidAddress,
    InvalidTimestamp,
    SarcophagusNotExists,
    StillActive,
)
from sarcophagus.rules import DAY, YEAR

from support import ProtocolTestCase


class TestDeathConsensus(ProtocolTestCase):

    def setUp(self):
        super().setUp()
        self.create_vault()
        self.deposit()

    def test_confirmation_progress(self):
        """Test status moves from partial to challengeable at k confirmations"""
        self.assertEqual(self.protocol.confirm_death(self.oracles[0], self.owner), DeathStatus.PARTIAL)
        self.assertEqual(self.protocol.confirm_death(self.oracles[1], self.owner), DeathStatus.PARTIAL)
        self.assertFalse(self.protocol.get_vault(self.owner).deceased)

        self.assertEqual(self.protocol.confirm_death(self.oracles[2], self.owner), DeathStatus.CHALLENGEABLE)
        vault = self.protocol.get_vault(self.owner)
        self.assertTrue(vault.deceased)
        self.assertEqual(vault.death_timestamp, self.clock())
        self.assertEqual(vault.age_at_death, 60)

        status = self.protocol.get_death_status(self.owner)
        self.assertEqual(status["confirmations"], 3)
        self.assertEqual(status["challenge_window_end"], self.clock() + 30 * DAY)

        self.clock.advance(30 * DAY)
        self.assertEqual(self.protocol.get_death_status(self.owner)["status"], "final")

    def test_duplicate_confirmation(self):
        self.protocol.confirm_death(self.oracles[0], self.owner)
        with self.assertRaises(AlreadyConfirmed):
            self.protocol.confirm_death(self.oracles[0], self.owner)
        self.assertEqual(self.protocol.get_death_status(self.owner)["confirmations"], 1)

    def test_confirmation_after_threshold(self):
        extra = IdentityKey().identity
        self.protocol.grant_role(self.admin, "oracle", extra)
        self.confirm_death()

        with self.assertRaises(DeathAlreadyVerified):
            self.protocol.confirm_death(extra, self.owner)

    def test_oracle_role_required(self):
        with self.assertRaises(AccessDenied):
            self.protocol.confirm_death(self.alice, self.owner)
        with self.assertRaises(SarcophagusNotExists):
            self.protocol.confirm_death(self.oracle, self.alice)

    def test_future_death_timestamp(self):
        with self.assertRaises(InvalidTimestamp):
            self.protocol.confirm_death(self.oracle, self.owner, self.clock() + 1)

    def test_reported_death_timestamp(self):
        died = self.clock() - 10 * DAY
        self.protocol.confirm_death(self.oracles[0], self.owner, died)
        self.protocol.confirm_death(self.oracles[1], self.owner)
        self.protocol.confirm_death(self.oracles[2], self.owner)

        self.assertEqual(self.protocol.get_vault(self.owner).death_timestamp, died)

    def test_age_at_death_advances(self):
        self.clock.advance(2 * YEAR + DAY)
        self.confirm_death()
        self.assertEqual(self.protocol.get_vault(self.owner).age_at_death, 62)


class TestLiveness(ProtocolTestCase):

    def setUp(self):
        super().setUp()
        self.create_vault()

    def test_recent_activity_blocks_confirmation(self):
        """Test liveness proof inside the threshold rejects confirmation"""
        self.protocol.record_activity(self.owner, self.owner, "DAILY_CHECK", "Still here")

        self.clock.advance(179 * DAY)
        with self.assertRaises(StillActive):
            self.protocol.confirm_death(self.oracle, self.owner)
        self.assertIsNone(self.protocol.death.get_record(self.owner))

        self.clock.advance(DAY)
        self.assertEqual(self.protocol.confirm_death(self.oracle, self.owner), DeathStatus.PARTIAL)

    def test_emergency_contact(self):
        self.protocol.set_emergency_contact(self.owner, self.carol)
        self.protocol.record_activity(self.carol, self.owner, "HOSPITAL_VISIT")

        history = self.protocol.attestations.activity_history(self.owner)
        self.assertEqual(history[0].reporter, self.carol)
        with self.assertRaises(StillActive):
            self.protocol.confirm_death(self.oracle, self.owner)

    def test_activity_reporters(self):
        with self.assertRaises(AccessDenied):
            self.protocol.record_activity(self.alice, self.owner, "DAILY_CHECK")
        with self.assertRaises(InvalidAddress):
            self.protocol.set_emergency_contact(self.owner, self.owner)


class TestChallenge(ProtocolTestCase):

    def setUp(self):
        super().setUp()
        self.create_vault()
        self.deposit()
        self.confirm_death()

    def test_challenge_inside_window(self):
        """Test owner reverts a confirmation on day 29"""
        self.clock.advance(29 * DAY)
        self.protocol.challenge_death(self.owner)

        vault = self.protocol.get_vault(self.owner)
        self.assertFalse(vault.deceased)
        self.assertIsNone(vault.death_timestamp)

        status = self.protocol.get_death_status(self.owner)
        self.assertEqual(status["status"], "reverted")
        self.assertEqual(status["confirmations"], 0)
        self.assertTrue(status["challenge_used"])

        # the challenge itself proves liveness
        with self.assertRaises(StillActive):
            self.protocol.confirm_death(self.oracle, self.owner)

    def test_challenge_after_window(self):
        self.clock.advance(30 * DAY)
        with self.assertRaises(ChallengePeriodEnded):
            self.protocol.challenge_death(self.owner)
        self.assertTrue(self.protocol.get_vault(self.owner).deceased)

    def test_single_challenge(self):
        self.clock.advance(DAY)
        self.protocol.challenge_death(self.owner)

        self.clock.advance(self.rules.inactivity_threshold)
        self.assertEqual(self.confirm_death(), DeathStatus.CHALLENGEABLE)

        with self.assertRaises(ChallengeAlreadyUsed):
            self.protocol.challenge_death(self.owner)
        self.assertTrue(self.protocol.get_vault(self.owner).deceased)

    def test_claim_during_window(self):
        with self.assertRaises(InChallengePeriod):
            self.protocol.claim_inheritance(self.alice, self.owner, 0)

    def test_nothing_to_challenge(self):
        self.clock.advance(DAY)
        self.protocol.challenge_death(self.owner)
        with self.assertRaises(DeathNotVerified):
            self.protocol.challenge_death(self.owner)
        with self.assertRaises(DeathNotVerified):
            self.protocol.claim_inheritance(self.alice, self.owner, 0)


if __name__ == '__main__':
    unittest.main()
