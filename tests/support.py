import unittest

from sarcophagus import UNIT, AssetClass, IdentityKey, ManualClock, ProtocolRules, SarcophagusProtocol


class ProtocolTestCase(unittest.TestCase):
    """Fresh protocol with an admin, three oracles, an owner and three beneficiaries"""

    def make_rules(self) -> ProtocolRules:
        return ProtocolRules.standard()

    def setUp(self):
        """Set up test fixtures"""
        self.clock = ManualClock()
        self.rules = self.make_rules()

        self.admin_key = IdentityKey()
        self.owner_key = IdentityKey()
        self.admin = self.admin_key.identity
        self.owner = self.owner_key.identity
        self.alice = IdentityKey().identity
        self.bob = IdentityKey().identity
        self.carol = IdentityKey().identity
        self.oracles = [IdentityKey().identity for _ in range(3)]

        self.protocol = SarcophagusProtocol(self.admin, self.rules, self.clock)
        for oracle in self.oracles:
            self.protocol.grant_role(self.admin, "oracle", oracle)
        self.oracle = self.oracles[0]
        self.protocol.verify_age(self.oracle, self.owner, 60, "passport")

    def fund(self, account, amount=1_000 * UNIT, asset=AssetClass.NATIVE):
        self.protocol.ledger.mint(asset, account, amount, "faucet")

    def create_vault(self, beneficiaries=None, percentages=(6000, 4000), vesting=None):
        beneficiaries = beneficiaries or [self.alice, self.bob]
        return self.protocol.create_vault(self.owner, beneficiaries, list(percentages), vesting)

    def deposit(self, amount=100 * UNIT, asset=AssetClass.NATIVE):
        self.fund(self.owner, amount, asset)
        return self.protocol.deposit(self.owner, {asset: amount})

    def confirm_death(self, count=None):
        count = self.rules.required_confirmations if count is None else count
        status = None
        for oracle in self.oracles[:count]:
            status = self.protocol.confirm_death(oracle, self.owner)
        return status

    def finalize_death(self):
        self.confirm_death()
        self.clock.advance(self.rules.challenge_period)

    def balance(self, account, asset=AssetClass.NATIVE):
        return self.protocol.balance_of(asset, account)
