"""
Sarcophagus - digital inheritance vaults
Oracle-attested death consensus, yield accrual and beneficiary vesting
"""

from .clock import ManualClock
from .death import DeathStatus
from .identity import IdentityKey
from .ledger import AssetClass
from .protocol import SarcophagusProtocol
from .registry import Role
from .rules import UNIT, ProtocolRules, WithdrawalKind
from .vault import VestingParams

__version__ = "0.1.0"
__all__ = [
    "SarcophagusProtocol",
    "ProtocolRules",
    "WithdrawalKind",
    "AssetClass",
    "DeathStatus",
    "IdentityKey",
    "ManualClock",
    "Role",
    "VestingParams",
    "UNIT",
]
