"""
Runtime validation of collaborator wiring.

Use cases receive their repositories and adapters through the constructor.
These helpers check them against the ``@runtime_checkable`` protocols in
``booking.repositories`` so that mis-wiring fails at construction time
instead of halfway through a booking.
"""

from typing import Type, TypeVar
import logging

logger = logging.getLogger(__name__)

P = TypeVar("P")


class RepositoryValidationError(Exception):
    """Raised when a collaborator does not satisfy its protocol"""

    pass


def validate_repository_protocol(
    repository: object, protocol: Type[P]
) -> None:
    """
    Validate that an implementation satisfies a protocol contract.

    Args:
        repository: The implementation to validate
        protocol: The protocol class to validate against

    Raises:
        RepositoryValidationError: If validation fails
    """
    logger.debug(
        "Validating repository protocol",
        extra={
            "repository_type": type(repository).__name__,
            "protocol_name": protocol.__name__,
        },
    )

    if not isinstance(repository, protocol):
        logger.error(
            "Repository protocol validation failed",
            extra={
                "repository_type": type(repository).__name__,
                "protocol_name": protocol.__name__,
            },
        )
        raise RepositoryValidationError(
            f"{type(repository).__name__} does not implement "
            f"{protocol.__name__}. Missing or incorrect methods."
        )


def ensure_repository_protocol(repository: object, protocol: Type[P]) -> P:
    """Validate and return ``repository`` typed as ``protocol``."""
    validate_repository_protocol(repository, protocol)
    return repository  # type: ignore[return-value]
