"""
Typed error conditions for the inheritance vault engine.

Every rejected call raises one of these synchronously and leaves all state
unchanged. The four families mirror how a caller should react:

- ValidationError: bad input, resubmit with corrected values
- StateError: the call arrived at the wrong point in a record's lifecycle
- AuthorizationError: the caller lacks the role or identity match
- ResourceError: a rate window or hard ceiling was hit
"""

from typing import Any, Dict, Optional


class SarcophagusError(Exception):
    """Base class for every engine error.

    Attributes:
        message: Human-readable description
        details: Extra context (owner, index, limits...)
        recoverable: Whether resubmitting later/corrected can succeed
    """

    recoverable = False

    def __init__(
        self,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable

    @property
    def code(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "error": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# ==================== Validation Errors ====================


class ValidationError(SarcophagusError, ValueError):
    recoverable = True


class InvalidAddress(ValidationError):
    pass


class InvalidAmount(ValidationError):
    pass


class InvalidAge(ValidationError):
    pass


class InvalidBeneficiaryCount(ValidationError):
    pass


class TotalPercentageNot100(ValidationError):
    pass


class InvalidPercentage(ValidationError):
    pass


class InvalidAssetClass(ValidationError):
    pass


class InvalidMilestone(ValidationError):
    pass


class CollectionNotWhitelisted(ValidationError):
    pass


class InvalidTimestamp(ValidationError):
    pass


class InvalidRoleChange(ValidationError):
    pass


# ==================== State Errors ====================


class StateError(SarcophagusError):
    pass


class SarcophagusAlreadyExists(StateError):
    pass


class SarcophagusNotExists(StateError):
    pass


class NotVerified(StateError):
    """Owner has no age attestation yet."""


class AlreadyClaimed(StateError):
    pass


class AlreadyConfirmed(StateError):
    pass


class StillActive(StateError):
    """Owner recorded activity inside the inactivity threshold."""


class DeathAlreadyVerified(StateError):
    pass


class DeathNotVerified(StateError):
    pass


class InChallengePeriod(StateError):
    pass


class ChallengePeriodEnded(StateError):
    pass


class ChallengeAlreadyUsed(StateError):
    pass


class MilestoneNotAchieved(StateError):
    pass


class ConditionNotMet(StateError):
    pass


class VestingLocked(StateError):
    """Survivorship period or vesting cliff has not elapsed yet."""


class VestingNotConfigured(StateError):
    pass


class AgeRestriction(StateError):
    pass


class AllowanceNotDue(StateError):
    pass


class WithdrawalLocked(StateError):
    pass


class AssetAlreadyLocked(StateError):
    pass


class AssetNotLocked(StateError):
    pass


class NoRewardsToClaim(StateError):
    pass


class ProtocolPaused(StateError):
    pass


class ReentrantCall(StateError):
    pass


# ==================== Authorization Errors ====================


class AuthorizationError(SarcophagusError, PermissionError):
    pass


class AccessDenied(AuthorizationError):
    """Caller does not hold the required role."""


class InvalidBeneficiary(AuthorizationError):
    """Caller/recipient is not the registered beneficiary."""


class NotAssetOwner(AuthorizationError):
    pass


class InvalidSignature(AuthorizationError):
    pass


# ==================== Resource Errors ====================


class ResourceError(SarcophagusError):
    pass


class RateLimitExceeded(ResourceError):
    recoverable = True


class RewardSupplyExhausted(ResourceError):
    pass


class InsufficientBalance(ResourceError):
    recoverable = True


class NoFundsAvailable(ResourceError):
    pass
