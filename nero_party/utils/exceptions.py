"""Error taxonomy for party and scoring operations.

Every error carries a stable symbolic ``code``, a human-readable message and,
for validation failures, the name of the offending field. Errors are raised
synchronously and never retried by the services that raise them.
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Symbolic error codes shared with clients."""

    # Authorization
    NOT_HOST = "NOT_HOST"
    NOT_SUBMITTER = "NOT_SUBMITTER"

    # Validation
    INVALID_SETTINGS = "INVALID_SETTINGS"
    INVALID_CONFIDENCE = "INVALID_CONFIDENCE"
    INVALID_VOTE_RATING = "INVALID_VOTE_RATING"
    INVALID_PREDICTION = "INVALID_PREDICTION"
    INVALID_ACHIEVEMENT = "INVALID_ACHIEVEMENT"

    # Not found
    PARTY_NOT_FOUND = "PARTY_NOT_FOUND"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    SONG_NOT_FOUND = "SONG_NOT_FOUND"
    VOTE_NOT_FOUND = "VOTE_NOT_FOUND"
    TARGET_NOT_FOUND = "TARGET_NOT_FOUND"

    # State and limits
    PARTY_FULL = "PARTY_FULL"
    PARTY_STARTED = "PARTY_STARTED"
    SONG_LIMIT_REACHED = "SONG_LIMIT_REACHED"
    DUPLICATE_SONG = "DUPLICATE_SONG"
    CANNOT_VOTE_OWN_SONG = "CANNOT_VOTE_OWN_SONG"
    VOTE_LOCKED = "VOTE_LOCKED"
    INVALID_STATE = "INVALID_STATE"
    PLAYER_NOT_IN_PARTY = "PLAYER_NOT_IN_PARTY"
    SUBMISSIONS_INCOMPLETE = "SUBMISSIONS_INCOMPLETE"
    CANNOT_KICK_SELF = "CANNOT_KICK_SELF"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"

    # Internal
    CODE_GENERATION_FAILED = "CODE_GENERATION_FAILED"
    IDENTITY_POOL_EXHAUSTED = "IDENTITY_POOL_EXHAUSTED"


class PartyError(Exception):
    """Base exception for party, voting and scoring errors."""

    default_code: ErrorCode = ErrorCode.INVALID_STATE

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.field = field

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "field": self.field,
        }

    def __repr__(self):
        return f"{type(self).__name__}(code={self.code.value}, message={self.message!r}, field={self.field!r})"


class NotFoundError(PartyError):
    """Raised when a referenced entity does not exist."""
    pass


class PartyNotFoundError(NotFoundError):
    default_code = ErrorCode.PARTY_NOT_FOUND


class PlayerNotFoundError(NotFoundError):
    default_code = ErrorCode.PLAYER_NOT_FOUND


class SongNotFoundError(NotFoundError):
    default_code = ErrorCode.SONG_NOT_FOUND


class VoteNotFoundError(NotFoundError):
    default_code = ErrorCode.VOTE_NOT_FOUND


class TargetNotFoundError(NotFoundError):
    default_code = ErrorCode.TARGET_NOT_FOUND


class PermissionDeniedError(PartyError):
    """Raised when the acting player is not allowed to perform the action."""
    pass


class NotHostError(PermissionDeniedError):
    default_code = ErrorCode.NOT_HOST


class NotSubmitterError(PermissionDeniedError):
    default_code = ErrorCode.NOT_SUBMITTER


class CannotKickSelfError(PermissionDeniedError):
    default_code = ErrorCode.CANNOT_KICK_SELF


class CannotVoteOwnSongError(PermissionDeniedError):
    default_code = ErrorCode.CANNOT_VOTE_OWN_SONG


class ValidationFailedError(PartyError):
    """Raised when a supplied value is outside its allowed domain."""
    pass


class InvalidSettingsError(ValidationFailedError):
    default_code = ErrorCode.INVALID_SETTINGS


class InvalidConfidenceError(ValidationFailedError):
    default_code = ErrorCode.INVALID_CONFIDENCE


class InvalidVoteRatingError(ValidationFailedError):
    default_code = ErrorCode.INVALID_VOTE_RATING


class InvalidPredictionError(ValidationFailedError):
    default_code = ErrorCode.INVALID_PREDICTION


class InvalidAchievementError(ValidationFailedError):
    default_code = ErrorCode.INVALID_ACHIEVEMENT


class StateConflictError(PartyError):
    """Raised when an operation is attempted out of sequence."""
    pass


class InvalidStateError(StateConflictError):
    default_code = ErrorCode.INVALID_STATE


class PartyStartedError(StateConflictError):
    default_code = ErrorCode.PARTY_STARTED


class PartyFullError(StateConflictError):
    default_code = ErrorCode.PARTY_FULL


class PlayerNotInPartyError(StateConflictError):
    default_code = ErrorCode.PLAYER_NOT_IN_PARTY


class SubmissionsIncompleteError(StateConflictError):
    default_code = ErrorCode.SUBMISSIONS_INCOMPLETE


class SongLimitReachedError(StateConflictError):
    default_code = ErrorCode.SONG_LIMIT_REACHED


class DuplicateSongError(StateConflictError):
    default_code = ErrorCode.DUPLICATE_SONG


class VoteLockedError(StateConflictError):
    default_code = ErrorCode.VOTE_LOCKED


class InsufficientPointsError(StateConflictError):
    default_code = ErrorCode.INSUFFICIENT_POINTS


class CodeGenerationError(PartyError):
    """Raised when no free party code could be drawn."""
    default_code = ErrorCode.CODE_GENERATION_FAILED


class IdentityPoolExhaustedError(PartyError):
    """Raised when a party has more players than an identity pool can cover."""
    default_code = ErrorCode.IDENTITY_POOL_EXHAUSTED
