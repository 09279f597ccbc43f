#!/usr/bin/env python3
"""
HTTP interface for the Sarcophagus inheritance vault engine

Mutating requests are signed: the caller sends its identity (compressed
secp256k1 public key, hex) in `X-Identity` and an ECDSA signature over the
canonical JSON body in `X-Signature`. Every body carries an integer `nonce`
that must exceed the last nonce accepted from the same identity.
"""

import logging
import os
import sys
from functools import wraps
from typing import Dict

from flask import Flask, current_app, g, jsonify, request

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from sarcophagus import IdentityKey, ProtocolRules, SarcophagusProtocol, VestingParams
from sarcophagus.errors import (
    AccessDenied,
    AuthorizationError,
    InvalidSignature,
    RateLimitExceeded,
    SarcophagusError,
    SarcophagusNotExists,
    ValidationError,
)
from sarcophagus.identity import require_signature

logger = logging.getLogger(__name__)

RULE_PRESETS = {
    "standard": ProtocolRules.standard,
    "accelerated": ProtocolRules.accelerated,
}


def _status_for(error: SarcophagusError) -> int:
    if isinstance(error, SarcophagusNotExists):
        return 404
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AuthorizationError):
        return 403
    if isinstance(error, RateLimitExceeded):
        return 429
    return 409


def _protocol() -> SarcophagusProtocol:
    return current_app.config["PROTOCOL"]


def signed(view):
    """Verify X-Identity / X-Signature and reject replayed nonces"""

    @wraps(view)
    def wrapper(*args, **kwargs):
        identity = request.headers.get("X-Identity", "")
        signature = request.headers.get("X-Signature", "")
        body = request.get_json(silent=True)
        if not isinstance(body, dict) or "nonce" not in body:
            raise InvalidSignature("Signed JSON body with a nonce is required")

        require_signature(identity, body, signature)

        nonce = body["nonce"]
        if isinstance(nonce, bool) or not isinstance(nonce, int):
            raise InvalidSignature("Nonce must be an integer")
        last_nonces: Dict[str, int] = current_app.config["LAST_NONCES"]
        last = last_nonces.get(identity)
        if last is not None and nonce <= last:
            logger.warning("Replayed nonce %d from %s... (last %d)", nonce, identity[:8], last)
            raise InvalidSignature("Nonce already used", details={"last_nonce": last})
        last_nonces[identity] = nonce

        g.caller = identity
        g.body = body
        return view(*args, **kwargs)

    return wrapper


def _require_self(owner: str) -> None:
    if g.caller != owner:
        raise AccessDenied("Only the vault owner can call this endpoint")


def _vault_view(protocol: SarcophagusProtocol, owner: str) -> dict:
    vault = protocol.get_vault(owner)
    return {
        "owner": owner,
        "vault": vault.to_dict(),
        "death": protocol.get_death_status(owner),
        "pending_rewards": protocol.pending_rewards(owner),
        "locked_asset_value": protocol.total_locked_asset_value(owner),
        "locked_assets": [a.to_dict() for a in protocol.locker.assets_of(owner)],
    }


def create_app(protocol: SarcophagusProtocol = None) -> Flask:
    app = Flask(__name__)

    if protocol is None:
        preset = os.environ.get("SARCOPHAGUS_RULES", "standard")
        admin_key = os.environ.get("SARCOPHAGUS_ADMIN_KEY")
        admin = IdentityKey.from_hex(admin_key) if admin_key else IdentityKey()
        if not admin_key:
            logger.warning("No SARCOPHAGUS_ADMIN_KEY set, generated admin %s", admin.identity)
        protocol = SarcophagusProtocol(admin.identity, RULE_PRESETS[preset]())

    app.config["PROTOCOL"] = protocol
    app.config["LAST_NONCES"] = {}  # identity -> highest accepted nonce

    @app.errorhandler(SarcophagusError)
    def handle_protocol_error(error):
        status = _status_for(error)
        logger.info("Request rejected with %s (%d): %s", error.code, status, error.message)
        return jsonify({"success": False, "error": error.message, "code": error.code}), status

    @app.errorhandler(KeyError)
    @app.errorhandler(ValueError)
    @app.errorhandler(TypeError)
    def handle_bad_request(error):
        return jsonify({"success": False, "error": f"Malformed request: {error}", "code": "BadRequest"}), 400

    @app.route('/')
    def index():
        """Service summary"""
        p = _protocol()
        return jsonify({
            "service": "sarcophagus",
            "config_version": p.config.version,
            "paused": p.config.paused,
            "vaults": len(p.vaults.owners()),
            "required_confirmations": p.rules.required_confirmations,
        })

    @app.route('/api/keys', methods=['POST'])
    def generate_keys():
        """Generate a fresh identity for demo clients"""
        private_hex, identity = IdentityKey.generate_key_pair()
        return jsonify({"success": True, "identity": identity, "private_key": private_hex})

    # ---- oracle ----

    @app.route('/api/oracle/verify_age', methods=['POST'])
    @signed
    def verify_age():
        body = g.body
        _protocol().verify_age(g.caller, body["user"], int(body["age"]), body.get("proof_ref", ""))
        return jsonify({"success": True})

    @app.route('/api/oracle/confirm_death', methods=['POST'])
    @signed
    def confirm_death():
        body = g.body
        status = _protocol().confirm_death(g.caller, body["owner"], body.get("death_timestamp"))
        return jsonify({"success": True, "status": status.value})

    @app.route('/api/oracle/attest_death', methods=['POST'])
    @signed
    def attest_death():
        _protocol().attest_death(g.caller, g.body["user"], g.body.get("proof_ref", ""))
        return jsonify({"success": True})

    @app.route('/api/oracle/achieve_milestone', methods=['POST'])
    @signed
    def achieve_milestone():
        body = g.body
        _protocol().achieve_milestone(
            g.caller,
            body["owner"],
            int(body["beneficiary_index"]),
            int(body["milestone_index"]),
            body.get("proof_ref", ""),
        )
        return jsonify({"success": True})

    @app.route('/api/oracle/satisfy_condition', methods=['POST'])
    @signed
    def satisfy_condition():
        body = g.body
        _protocol().satisfy_condition(
            g.caller, body["owner"], int(body["beneficiary_index"]), body.get("proof_ref", "")
        )
        return jsonify({"success": True})

    # ---- owner ----

    @app.route('/api/vaults', methods=['POST'])
    @signed
    def create_vault():
        body = g.body
        vesting = None
        if body.get("vesting") is not None:
            vesting = [VestingParams(**v) if v else None for v in body["vesting"]]
        p = _protocol()
        p.create_vault(g.caller, body["beneficiaries"], [int(x) for x in body["percentages"]], vesting)
        return jsonify({"success": True, **_vault_view(p, g.caller)}), 201

    @app.route('/api/vaults/<owner>')
    def get_vault(owner):
        return jsonify(_vault_view(_protocol(), owner))

    @app.route('/api/vaults/<owner>/death')
    def get_death_status(owner):
        return jsonify(_protocol().get_death_status(owner))

    @app.route('/api/vaults/<owner>/deposit', methods=['POST'])
    @signed
    def deposit(owner):
        _require_self(owner)
        amounts = {asset: int(amount) for asset, amount in g.body["amounts"].items()}
        result = _protocol().deposit(owner, amounts)
        return jsonify({"success": True, **result})

    @app.route('/api/vaults/<owner>/withdraw', methods=['POST'])
    @signed
    def withdraw(owner):
        _require_self(owner)
        result = _protocol().withdraw(owner, g.body["kind"], g.body.get("portion_bps"))
        return jsonify({"success": True, **result})

    @app.route('/api/vaults/<owner>/challenge', methods=['POST'])
    @signed
    def challenge_death(owner):
        _require_self(owner)
        p = _protocol()
        p.challenge_death(owner)
        return jsonify({"success": True, "death": p.get_death_status(owner)})

    @app.route('/api/vaults/<owner>/rewards')
    def pending_rewards(owner):
        return jsonify({"owner": owner, "pending_rewards": _protocol().pending_rewards(owner)})

    @app.route('/api/vaults/<owner>/rewards/claim', methods=['POST'])
    @signed
    def claim_rewards(owner):
        _require_self(owner)
        return jsonify({"success": True, "claimed": _protocol().claim_pending_rewards(owner)})

    @app.route('/api/vaults/<owner>/activity', methods=['POST'])
    @signed
    def record_activity(owner):
        body = g.body
        _protocol().record_activity(g.caller, owner, body.get("proof_type", "CHECK_IN"), body.get("details", ""))
        return jsonify({"success": True})

    @app.route('/api/vaults/<owner>/emergency_contact', methods=['POST'])
    @signed
    def set_emergency_contact(owner):
        _require_self(owner)
        _protocol().set_emergency_contact(owner, g.body["contact"])
        return jsonify({"success": True})

    @app.route('/api/vaults/<owner>/yield/lock', methods=['POST'])
    @signed
    def lock_yield(owner):
        _require_self(owner)
        locked = _protocol().lock_yield_tokens(owner, int(g.body["amount"]))
        return jsonify({"success": True, "locked": locked})

    @app.route('/api/vaults/<owner>/yield/withdraw', methods=['POST'])
    @signed
    def withdraw_yield(owner):
        _require_self(owner)
        result = _protocol().withdraw_yield_tokens(owner, int(g.body["amount"]))
        return jsonify({"success": True, **result})

    @app.route('/api/vaults/<owner>/assets/lock', methods=['POST'])
    @signed
    def lock_asset(owner):
        _require_self(owner)
        body = g.body
        entry = _protocol().lock_asset(
            owner, body["collection"], int(body["token_id"]), int(body["declared_value"]), body["beneficiary"]
        )
        return jsonify({"success": True, "asset": entry.to_dict()})

    @app.route('/api/vaults/<owner>/assets/unlock', methods=['POST'])
    @signed
    def unlock_asset(owner):
        _require_self(owner)
        entry = _protocol().unlock_asset(owner, g.body["collection"], int(g.body["token_id"]))
        return jsonify({"success": True, "asset": entry.to_dict()})

    @app.route('/api/vaults/<owner>/assets/reassign', methods=['POST'])
    @signed
    def reassign_asset(owner):
        _require_self(owner)
        body = g.body
        entry = _protocol().reassign_beneficiary(owner, body["collection"], int(body["token_id"]), body["beneficiary"])
        return jsonify({"success": True, "asset": entry.to_dict()})

    @app.route('/api/vaults/<owner>/beneficiaries/<int:index>/vesting', methods=['POST'])
    @signed
    def set_age_vesting(owner, index):
        _require_self(owner)
        body = g.body
        schedule = _protocol().set_age_vesting(
            owner, index, int(body["full_access_age"]), int(body.get("monthly_allowance", 0)), body.get("guardian")
        )
        return jsonify({"success": True, "full_access_age": schedule.full_access_age})

    @app.route('/api/vaults/<owner>/beneficiaries/<int:index>/milestones', methods=['POST'])
    @signed
    def add_milestone(owner, index):
        _require_self(owner)
        milestone_index = _protocol().add_milestone(owner, index, g.body["description"], int(g.body["amount"]))
        return jsonify({"success": True, "milestone_index": milestone_index}), 201

    # ---- beneficiary ----

    @app.route('/api/vaults/<owner>/beneficiaries/<int:index>/claim', methods=['POST'])
    @signed
    def claim_inheritance(owner, index):
        result = _protocol().claim_inheritance(g.caller, owner, index)
        return jsonify({"success": True, **result})

    @app.route('/api/vaults/<owner>/beneficiaries/<int:index>/allowance', methods=['POST'])
    @signed
    def claim_allowance(owner, index):
        paid = _protocol().claim_monthly_allowance(g.caller, owner, index)
        return jsonify({"success": True, "paid": paid})

    @app.route('/api/vaults/<owner>/beneficiaries/<int:index>/full_access', methods=['POST'])
    @signed
    def claim_full_access(owner, index):
        paid = _protocol().claim_full_access(g.caller, owner, index)
        return jsonify({"success": True, "paid": paid})

    @app.route('/api/vaults/<owner>/beneficiaries/<int:index>/milestones/<int:milestone_index>/claim', methods=['POST'])
    @signed
    def claim_milestone(owner, index, milestone_index):
        paid = _protocol().claim_milestone(g.caller, owner, index, milestone_index)
        return jsonify({"success": True, "paid": paid})

    # ---- administration ----

    @app.route('/api/admin/collections', methods=['POST'])
    @signed
    def whitelist_collection():
        _protocol().whitelist_collection(g.caller, g.body["collection"], int(g.body["max_value"]))
        return jsonify({"success": True, "config_version": _protocol().config.version})

    @app.route('/api/admin/collections/remove', methods=['POST'])
    @signed
    def remove_collection():
        _protocol().remove_collection(g.caller, g.body["collection"])
        return jsonify({"success": True, "config_version": _protocol().config.version})

    @app.route('/api/admin/global_max_asset_value', methods=['POST'])
    @signed
    def update_global_max():
        _protocol().update_global_max_asset_value(g.caller, int(g.body["value"]))
        return jsonify({"success": True, "config_version": _protocol().config.version})

    @app.route('/api/admin/pause', methods=['POST'])
    @signed
    def pause():
        _protocol().pause(g.caller)
        return jsonify({"success": True, "paused": True})

    @app.route('/api/admin/unpause', methods=['POST'])
    @signed
    def unpause():
        _protocol().unpause(g.caller)
        return jsonify({"success": True, "paused": False})

    @app.route('/api/admin/roles/grant', methods=['POST'])
    @signed
    def grant_role():
        _protocol().grant_role(g.caller, g.body["role"], g.body["account"])
        return jsonify({"success": True, "config_version": _protocol().config.version})

    @app.route('/api/admin/roles/revoke', methods=['POST'])
    @signed
    def revoke_role():
        _protocol().revoke_role(g.caller, g.body["role"], g.body["account"])
        return jsonify({"success": True, "config_version": _protocol().config.version})

    @app.route('/api/admin/audit')
    def audit_log():
        return jsonify({"entries": [e.to_dict() for e in _protocol().config.audit_log()]})

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.environ.get("PORT", 10000))
    create_app().run(
        host="0.0.0.0",
        port=port,
        debug=False
    )
