#!/usr/bin/env python3
"""
Complete demo of the Sarcophagus inheritance vault
"""

import logging

from sarcophagus import (
    UNIT,
    AssetClass,
    IdentityKey,
    ManualClock,
    ProtocolRules,
    SarcophagusProtocol,
    VestingParams,
)
from sarcophagus.errors import AlreadyClaimed, InChallengePeriod, StillActive
from sarcophagus.rules import DAY


def fmt(amount: int) -> str:
    return f"{amount / UNIT:,.4f}"


def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("⚱️  SARCOPHAGUS INHERITANCE VAULT - COMPLETE DEMO")
    print("=" * 60)
    print()

    clock = ManualClock()
    rules = ProtocolRules.standard()

    # Step 1: Setup
    print("🔧 STEP 1: Setting up participants")
    print("-" * 40)

    admin, owner, alice, bob = (IdentityKey() for _ in range(4))
    oracles = [IdentityKey() for _ in range(rules.required_confirmations)]
    protocol = SarcophagusProtocol(admin.identity, rules, clock)

    for oracle in oracles:
        protocol.grant_role(admin.identity, "oracle", oracle.identity)
    for name, key in [("Owner", owner), ("Alice", alice), ("Bob", bob)]:
        print(f"✅ {name}: {key.identity[:16]}...")
    print(f"✅ Oracles: {len(oracles)} ({rules.required_confirmations} confirmations required)")
    print()

    # Step 2: Create vault
    print("🏗️  STEP 2: Creating the vault")
    print("-" * 40)

    protocol.verify_age(oracles[0].identity, owner.identity, 67, "passport-check")
    protocol.verify_age(oracles[0].identity, alice.identity, 35, "passport-check")
    protocol.create_vault(
        owner.identity,
        [alice.identity, bob.identity],
        [6000, 4000],
        [None, VestingParams(full_access_age=25, monthly_allowance=5 * UNIT, guardian=alice.identity)],
    )
    print("✅ Alice: 60% immediate")
    print("✅ Bob: 40% vested (minor without attestation, full access at 25, 5 units monthly via guardian)")
    print()

    # Step 3: Deposits
    print("💰 STEP 3: Depositing")
    print("-" * 40)

    protocol.ledger.mint(AssetClass.NATIVE, owner.identity, 1_000 * UNIT, "faucet")
    protocol.ledger.mint(AssetClass.ENERGY, owner.identity, 500 * UNIT, "faucet")
    result = protocol.deposit(owner.identity, {AssetClass.NATIVE: 1_000 * UNIT, AssetClass.ENERGY: 500 * UNIT})
    print(f"✅ Locked {fmt(result['total'])} units, initial bonus {fmt(result['bonus'])} yield")

    clock.advance(200 * DAY)
    print(f"✅ Pending yield after 200 days: {fmt(protocol.pending_rewards(owner.identity))}")
    print()

    # Step 4: Death consensus
    print("⚰️  STEP 4: Death confirmation")
    print("-" * 40)

    protocol.record_activity(owner.identity, owner.identity, "DAILY_CHECK", "Still here")
    try:
        protocol.confirm_death(oracles[0].identity, owner.identity)
    except StillActive as e:
        print(f"   ✅ EXPECTED FAILURE: {e}")

    clock.advance(rules.inactivity_threshold)
    for oracle in oracles:
        status = protocol.confirm_death(oracle.identity, owner.identity)
        print(f"   🗳️  {oracle.identity[:12]}... confirmed -> {status.value}")

    try:
        protocol.claim_inheritance(alice.identity, owner.identity, 0)
    except InChallengePeriod as e:
        print(f"   ✅ EXPECTED FAILURE: {e}")

    clock.advance(rules.challenge_period)
    print(f"✅ Death status: {protocol.get_death_status(owner.identity)['status']}")
    print()

    # Step 5: Claims
    print("📜 STEP 5: Beneficiary claims")
    print("-" * 40)

    result = protocol.claim_inheritance(alice.identity, owner.identity, 0)
    print(f"   ✅ Alice received: { {k: fmt(v) for k, v in result['paid'].items()} }")
    try:
        protocol.claim_inheritance(alice.identity, owner.identity, 0)
    except AlreadyClaimed as e:
        print(f"   ✅ EXPECTED FAILURE: {e}")

    result = protocol.claim_inheritance(bob.identity, owner.identity, 1)
    print(f"   🔒 Bob's share held in vesting: { {k: fmt(v) for k, v in result['share'].items()} }")
    paid = protocol.claim_monthly_allowance(alice.identity, owner.identity, 1)
    print(f"   ✅ Guardian drew allowance: { {k: fmt(v) for k, v in paid.items()} }")
    print()

    # Summary
    print("=" * 60)
    print("🎉 DEMO COMPLETE")
    print("=" * 60)
    for name, key in [("Alice", alice), ("Bob", bob)]:
        balances = {
            asset.value: fmt(protocol.balance_of(asset, key.identity))
            for asset in (AssetClass.NATIVE, AssetClass.ENERGY, AssetClass.YIELD)
        }
        print(f"{name}: {balances}")
    print(f"Config version: {protocol.config.version}")


if __name__ == "__main__":
    main()
