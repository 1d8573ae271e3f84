"""Parsing of client-supplied resource identifiers."""

from uuid import UUID

from .exceptions import NotFoundError


def parse_resource_id(value: object, resource_type: str) -> UUID:
    """
    Parse a resource ID, treating a malformed ID as a missing resource.

    Raises:
        NotFoundError: If ``value`` is not a UUID
    """
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise NotFoundError(resource_type=resource_type, resource_id=str(value))
