import enum


class RejectionReason(enum.Enum):
    ROUND_NOT_OPEN = 'ROUND_NOT_OPEN'
    SELECTIONS_LOCKED = 'SELECTIONS_LOCKED'
    TICKET_ELIMINATED = 'TICKET_ELIMINATED'
    TEAM_ALREADY_SELECTED = 'TEAM_ALREADY_SELECTED'
    INVALID_TEAM_FOR_ROUND = 'INVALID_TEAM_FOR_ROUND'
    ALREADY_PICKED_THIS_ROUND = 'ALREADY_PICKED_THIS_ROUND'


class DeadlineReason(enum.Enum):
    ROUND_NOT_OPEN = 'ROUND_NOT_OPEN'
    SELECTIONS_LOCKED = 'SELECTIONS_LOCKED'
    DEADLINE_NOT_IN_FUTURE = 'DEADLINE_NOT_IN_FUTURE'
    DEADLINE_TOO_FAR = 'DEADLINE_TOO_FAR'


class PreconditionReason(enum.Enum):
    GAME_NOT_ACTIVE = 'GAME_NOT_ACTIVE'
    GAME_NOT_IN_REGISTRATION = 'GAME_NOT_IN_REGISTRATION'
    ROUND_OUT_OF_RANGE = 'ROUND_OUT_OF_RANGE'
    ROUND_NOT_LOCKED = 'ROUND_NOT_LOCKED'
    RESULTS_INCOMPLETE = 'RESULTS_INCOMPLETE'


class HighlanderError(Exception):
    """Base class for engine errors. ``code`` is surfaced verbatim to callers."""

    status_code = 400
    retryable = False

    def __init__(self, code, message=None, details=None):
        self.code = code.value if isinstance(code, enum.Enum) else code
        self.message = message or self.code
        self.details = details or {}
        super(HighlanderError, self).__init__(self.message)

    def to_dict(self):
        payload = {'error': self.code, 'message': self.message, 'retryable': self.retryable}
        if self.details:
            payload['details'] = self.details
        return payload


class SelectionRejected(HighlanderError):
    status_code = 409

    def __init__(self, reason, message=None):
        self.reason = reason
        super(SelectionRejected, self).__init__(reason, message)


class DeadlineRejected(HighlanderError):
    status_code = 400

    def __init__(self, reason, message=None):
        self.reason = reason
        super(DeadlineRejected, self).__init__(reason, message)


class RoundPreconditionFailed(HighlanderError):
    status_code = 409

    def __init__(self, reason, message=None, details=None):
        self.reason = reason
        # Only missing results clear up on their own
        self.retryable = reason is PreconditionReason.RESULTS_INCOMPLETE
        super(RoundPreconditionFailed, self).__init__(reason, message, details)


class InvariantViolation(HighlanderError):
    """Stored state contradicts an engine invariant. Never retried."""

    status_code = 500

    def __init__(self, message, details=None):
        super(InvariantViolation, self).__init__('INVARIANT_VIOLATION', message, details)
