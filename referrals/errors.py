class ReferralServiceError(Exception):
    status_code = 500
    code = "Internal"


class UnauthenticatedError(ReferralServiceError):
    status_code = 401
    code = "Unauthenticated"


class ForbiddenError(ReferralServiceError):
    status_code = 403
    code = "Forbidden"


class InvalidRequestError(ReferralServiceError):
    status_code = 400
    code = "InvalidRequest"


class NotFoundError(ReferralServiceError):
    status_code = 404
    code = "NotFound"


class CodeNotFoundError(NotFoundError):
    code = "CodeNotFound"


class AlreadyAppliedError(ReferralServiceError):
    status_code = 409
    code = "AlreadyApplied"


class SelfReferralError(ReferralServiceError):
    status_code = 400
    code = "SelfReferralForbidden"


class InternalError(ReferralServiceError):
    pass
