"""Validation utilities for gridprov manifests."""

from pydantic import ValidationError as PydanticValidationError


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten a Pydantic ValidationError into one message per field.

    Locations are joined with dots, so an invalid machine memory reads as
    ``deployments.0.machines.1.memory_mb``.

    Args:
        exc: Pydantic ValidationError exception

    Returns:
        List of human-readable error messages
    """
    errors: list[str] = []

    for error in exc.errors():
        loc = error.get("loc", ())
        field_path = ".".join(str(item) for item in loc) if loc else "manifest"
        msg = error.get("msg", "Unknown error")

        if error.get("type", "") == "value_error":
            errors.append(f"Field '{field_path}': {msg} (received: {error.get('input')!r})")
        else:
            errors.append(f"Field '{field_path}': {msg}")

    return errors if errors else ["Validation failed with unknown error"]
