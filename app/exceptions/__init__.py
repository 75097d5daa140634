# app/exceptions/__init__.py

from exceptions.domain_exceptions import (
    DomainException,
    NotFoundException,
    BadRequestException,
    ConflictException,
    InvalidStateException,
    UnauthorizedException,
    ForbiddenException,
    ValidationException,
    TransportException
)

__all__ = [
    'DomainException',
    'NotFoundException',
    'BadRequestException',
    'ConflictException',
    'InvalidStateException',
    'UnauthorizedException',
    'ForbiddenException',
    'ValidationException',
    'TransportException'
]
