"""
API middleware module.
"""
from marketplace.api.middleware.error_handler import (
    AppException,
    NotFoundException,
    ForbiddenException,
    BadRequestException,
    ConflictException,
    ValidationException,
    PreconditionException,
    UpstreamServiceException,
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)

__all__ = [
    "AppException",
    "NotFoundException",
    "ForbiddenException",
    "BadRequestException",
    "ConflictException",
    "ValidationException",
    "PreconditionException",
    "UpstreamServiceException",
    "app_exception_handler",
    "validation_exception_handler",
    "http_exception_handler",
    "unhandled_exception_handler",
]
