"""
Typed failures raised where a problem is detected and rendered once, by the
error handlers registered in app.py, into the response envelope.
"""


class AppError(Exception):
    status_code = 400
    error_code = "APPLICATION_ERROR"
    default_message = "The request could not be processed"

    def __init__(self, message=None, errors=None):
        self.message = message or self.default_message
        self.errors = list(errors) if errors else [self.message]
        super().__init__(self.message)


class Unauthenticated(AppError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Authentication required"


class Forbidden(AppError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action"


class NotFound(AppError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, key=None, message=None):
        self.entity = entity
        self.key = key
        if message is None:
            message = f"{entity} ({key}) was not found" if key is not None else f"{entity} was not found"
        super().__init__(message)


class BusinessRuleViolation(AppError):
    status_code = 400
    error_code = "BUSINESS_RULE_VIOLATION"
    default_message = "The request violates a business rule"


class ValidationFailed(BusinessRuleViolation):
    error_code = "VALIDATION_ERROR"
    default_message = "One or more validation errors occurred"

    def __init__(self, errors):
        errors = list(errors)
        super().__init__(errors[0] if errors else None, errors)


class InvalidTransition(BusinessRuleViolation):
    error_code = "INVALID_TRANSITION"

    def __init__(self, current, operation: str, message=None):
        self.current = current
        self.operation = operation
        super().__init__(message or f"Cannot {operation} a booking in {current} status")


class SlotConflict(BusinessRuleViolation):
    error_code = "SLOT_CONFLICT"
    default_message = "This time slot is already booked. Please select a different time."


class Duplicate(AppError):
    status_code = 409
    error_code = "DUPLICATE"
    default_message = "The entity already exists"
