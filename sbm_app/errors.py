class ServiceError(Exception):
    """Raised by service functions; the message is shown to the user as-is."""

    def __init__(self, message, code="error"):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self):
        return self.message


class ValidationError(ServiceError):
    def __init__(self, message):
        super().__init__(message, code="validation_error")


class NotFoundError(ServiceError):
    def __init__(self, message):
        super().__init__(message, code="not_found")


class ConflictError(ServiceError):
    def __init__(self, message):
        super().__init__(message, code="conflict")
