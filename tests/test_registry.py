import unittest

from sarcophagus import UNIT, IdentityKey, ProtocolRules, Role
from sarcophagus.attestation import AttestationRegistry
from sarcophagus.errors import (
    AccessDenied,
    InvalidAddress,
    InvalidAge,
    InvalidAmount,
    InvalidRoleChange,
    NotVerified,
    ProtocolPaused,
)
from sarcophagus.registry import ConfigStore
from sarcophagus.rules import YEAR

from support import ProtocolTestCase

NOW = 1_700_000_000


class TestConfigStore(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.admin = IdentityKey().identity
        self.oracle = IdentityKey().identity
        self.config = ConfigStore(self.admin, 1_000 * UNIT)

    def test_roles(self):
        """Test role grants are idempotent and versioned"""
        self.config.grant_role(self.admin, Role.ORACLE, self.oracle, NOW)
        self.config.grant_role(self.admin, Role.ORACLE, self.oracle, NOW)

        self.assertTrue(self.config.has_role(Role.ORACLE, self.oracle))
        self.assertEqual(self.config.version, 1)
        self.assertEqual(self.config.members(Role.ORACLE), [self.oracle])

        self.config.revoke_role(self.admin, Role.ORACLE, self.oracle, NOW)
        self.assertFalse(self.config.has_role(Role.ORACLE, self.oracle))
        with self.assertRaises(InvalidRoleChange):
            self.config.revoke_role(self.admin, Role.ORACLE, self.oracle, NOW)

    def test_last_admin(self):
        with self.assertRaises(InvalidRoleChange):
            self.config.revoke_role(self.admin, Role.ADMIN, self.admin, NOW)

        second = IdentityKey().identity
        self.config.grant_role(self.admin, Role.ADMIN, second, NOW)
        self.config.revoke_role(second, Role.ADMIN, self.admin, NOW)
        self.assertEqual(self.config.members(Role.ADMIN), [second])

    def test_admin_required(self):
        with self.assertRaises(AccessDenied):
            self.config.grant_role(self.oracle, Role.ORACLE, self.oracle, NOW)
        with self.assertRaises(AccessDenied):
            self.config.pause(self.oracle, NOW)
        self.assertEqual(self.config.version, 0)

    def test_collections(self):
        collection = IdentityKey().identity
        self.config.whitelist_collection(self.admin, collection, 50 * UNIT, NOW)

        self.assertTrue(self.config.is_whitelisted(collection))
        self.assertEqual(self.config.collection_max(collection), 50 * UNIT)

        with self.assertRaises(InvalidAmount):
            self.config.whitelist_collection(self.admin, collection, 0, NOW)
        with self.assertRaises(InvalidAddress):
            self.config.whitelist_collection(self.admin, "not-a-collection", 1, NOW)

        self.config.remove_collection(self.admin, collection, NOW)
        self.assertFalse(self.config.is_whitelisted(collection))

    def test_audit_log(self):
        self.config.grant_role(self.admin, Role.ORACLE, self.oracle, NOW)
        self.config.update_global_max_asset_value(self.admin, 10 * UNIT, NOW + 1)
        self.config.pause(self.admin, NOW + 2)

        log = self.config.audit_log()
        self.assertEqual([e.action for e in log], ["grant_role", "update_global_max_asset_value", "pause"])
        self.assertEqual([e.version for e in log], [1, 2, 3])
        self.assertEqual(log[1].details, {"value": 10 * UNIT})

    def test_serialization(self):
        self.config.grant_role(self.admin, Role.ORACLE, self.oracle, NOW)
        self.config.pause(self.admin, NOW)

        restored = ConfigStore.from_dict(self.config.to_dict())
        self.assertTrue(restored.paused)
        self.assertEqual(restored.version, 2)
        self.assertTrue(restored.has_role(Role.ORACLE, self.oracle))


class TestAttestationRegistry(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.registry = AttestationRegistry(ProtocolRules.standard())
        self.oracle = IdentityKey().identity
        self.user = IdentityKey().identity

    def test_age_attestation(self):
        self.registry.record_age(self.oracle, self.user, 30, "passport", NOW)

        self.assertTrue(self.registry.is_verified(self.user))
        self.assertEqual(self.registry.age_of(self.user, NOW + YEAR - 1), 30)
        self.assertEqual(self.registry.age_of(self.user, NOW + 3 * YEAR), 33)

    def test_age_bounds(self):
        for age in (17, 121):
            with self.subTest(age=age):
                with self.assertRaises(InvalidAge):
                    self.registry.record_age(self.oracle, self.user, age, "", NOW)
        with self.assertRaises(NotVerified):
            self.registry.age_of(self.user, NOW)

    def test_death_attestation_kept_once(self):
        first = self.registry.record_death(self.oracle, self.user, "certificate", NOW)
        second = self.registry.record_death(IdentityKey().identity, self.user, "other", NOW + 1)

        self.assertTrue(self.registry.is_deceased(self.user))
        self.assertIs(first, second)
        self.assertEqual(second.proof_ref, "certificate")


class TestProtocolAdministration(ProtocolTestCase):

    def test_pause_blocks_user_calls(self):
        self.create_vault()
        self.protocol.pause(self.admin)

        with self.assertRaises(ProtocolPaused):
            self.protocol.verify_age(self.oracle, self.alice, 30)
        with self.assertRaises(ProtocolPaused):
            self.protocol.record_activity(self.owner, self.owner, "DAILY_CHECK")

        # administration stays available
        self.protocol.grant_role(self.admin, "oracle", self.alice)
        self.protocol.unpause(self.admin)
        self.protocol.verify_age(self.alice, self.bob, 30)

    def test_revoked_oracle(self):
        self.protocol.revoke_role(self.admin, Role.ORACLE, self.oracle)
        with self.assertRaises(AccessDenied):
            self.protocol.verify_age(self.oracle, self.alice, 30)

    def test_failed_admin_call_not_audited(self):
        version = self.protocol.config.version
        with self.assertRaises(InvalidAmount):
            self.protocol.update_global_max_asset_value(self.admin, 0)
        self.assertEqual(self.protocol.config.version, version)


if __name__ == '__main__':
    unittest.main()
