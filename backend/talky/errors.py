class TalkyError(Exception):
    kind = "error"
    status = 500

    def __init__(self, reason: str = ""):
        super().__init__(reason)
        self.reason = reason or self.kind


class NotFound(TalkyError):
    kind = "not_found"
    status = 404


class Forbidden(TalkyError):
    kind = "forbidden"
    status = 403


class Conflict(TalkyError):
    """Backend version mismatch. Only the write serializer ever sees this."""
    kind = "conflict"
    status = 409


class Unavailable(TalkyError):
    kind = "unavailable"
    status = 503


class Disabled(TalkyError):
    kind = "disabled"
    status = 423


class InvalidRequest(TalkyError):
    kind = "invalid"
    status = 400


class Unauthorized(TalkyError):
    kind = "unauthorized"
    status = 401
