"""Rejections raised by the battle and duet rules.

Every error carries a machine readable ``reason`` and a message that can be
shown to the user as-is. Routers translate them into HTTP responses.
"""


class BattleError(Exception):
    reason = "battle_error"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason

    def to_detail(self) -> dict:
        return {"reason": self.reason, "message": self.message}


class ValidationError(BattleError):
    """Malformed input: unknown gift, non-positive quantity, bad config."""

    reason = "invalid_request"


class StateError(BattleError):
    """The call is not allowed in the battle's current lifecycle state."""

    reason = "invalid_state"


class ConflictError(BattleError):
    reason = "conflict"


class AlreadyVotedError(ConflictError):
    reason = "already_voted"

    def __init__(self, voter_id: str):
        super().__init__("You already voted in this battle.")
        self.voter_id = voter_id


class ResourceError(BattleError):
    """Camera or microphone could not be acquired for a creator."""

    PERMISSION_DENIED = "permission_denied"
    DEVICE_BUSY = "device_busy"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"

    def __init__(self, kind: str, participant_id: str | None = None):
        messages = {
            self.PERMISSION_DENIED: "Camera or microphone permission was denied.",
            self.DEVICE_BUSY: "Camera or microphone is in use by another application.",
            self.NOT_FOUND: "No camera or microphone was found.",
            self.TIMEOUT: "Timed out waiting for camera and microphone.",
        }
        super().__init__(messages.get(kind, "Could not access camera/microphone."), kind)
        self.kind = kind
        self.participant_id = participant_id


class ExternalServiceError(BattleError):
    reason = "external_service_unavailable"


class NotFoundError(BattleError):
    reason = "not_found"


class BattleNotFoundError(NotFoundError):
    reason = "battle_not_found"

    def __init__(self, battle_id):
        super().__init__(f"Battle {battle_id} does not exist.")


class DuetNotFoundError(NotFoundError):
    reason = "duet_not_found"

    def __init__(self, duet_id):
        super().__init__(f"Duet {duet_id} does not exist.")


class ForbiddenError(BattleError):
    """The caller is not allowed to control this battle."""

    reason = "forbidden"


class InvitationNotFoundError(NotFoundError):
    reason = "invitation_not_found"

    def __init__(self, invitation_id):
        super().__init__(f"Battle invitation {invitation_id} does not exist.")
