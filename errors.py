# errors.py
"""Failure taxonomy shared by the redemption core and the HTTP layer.

Every business-rule failure is one of these; the API renders them as
``{"success": false, "error": <code>, "message": <message>}``.
"""


class RedeemError(Exception):
    code = "error"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(RedeemError):
    code = "invalid_request"
    status_code = 400
    default_message = "Invalid request"


class NotFound(RedeemError):
    code = "not_found"
    status_code = 404
    default_message = "Invalid code"


class Revoked(RedeemError):
    code = "revoked"
    status_code = 403
    default_message = "This code has been revoked"


class Expired(RedeemError):
    code = "expired"
    status_code = 403
    default_message = "This code has expired"


class AlreadyUsedUp(RedeemError):
    code = "already_used_up"
    status_code = 409
    default_message = "This code has already been used"


class RaceFailed(RedeemError):
    code = "race_failed"
    status_code = 409
    default_message = "Too many simultaneous claims, please try again"


class Hidden(RedeemError):
    code = "hidden"
    status_code = 403
    default_message = "This code is no longer active"


class NoResourceBound(RedeemError):
    code = "no_resource_bound"
    status_code = 409
    default_message = "No account has been assigned to this code yet"


class ResourceNotFound(RedeemError):
    code = "resource_not_found"
    status_code = 404
    default_message = "The assigned account no longer exists"


class Busy(RedeemError):
    code = "busy"
    status_code = 429
    default_message = "Another request is in progress, try again shortly"


class Internal(RedeemError):
    code = "internal"
    status_code = 500
    default_message = "Internal error"
