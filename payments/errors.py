class PaymentError(Exception):
    """Base class for failures surfaced to API callers.

    ``kind`` is the stable machine-readable code returned in the JSON error
    body; ``status_code`` is the HTTP status the views respond with.
    """

    kind = "internal"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidArgument(PaymentError):
    kind = "invalid-argument"
    status_code = 400


class Unauthenticated(PaymentError):
    kind = "unauthenticated"
    status_code = 401


class NotFound(PaymentError):
    kind = "not-found"
    status_code = 404


class UpstreamFailure(PaymentError):
    kind = "upstream-failure"
    status_code = 502
