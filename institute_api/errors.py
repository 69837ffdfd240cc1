class ServiceError(Exception):
    """Business-rule failure that maps onto an HTTP error response."""

    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message}
        body.update(self.extra)
        return body


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, entity: str):
        super().__init__(f"{entity} not found")


class ValidationFailed(ServiceError):
    status_code = 400


class PermissionDenied(ServiceError):
    status_code = 403


class ConflictError(ServiceError):
    status_code = 409


class InvalidSignature(ServiceError):
    status_code = 400

    def __init__(self):
        super().__init__("Invalid payment signature")


class GatewayError(ServiceError):
    status_code = 500
