"""
Validation service for user input.

Turns raw identifiers typed or pasted by a user into ProductReference
objects, and sanitizes free text scraped from the web before it is shown
to the generative backend.
"""

import re
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from product_insight.models.schemas import ProductReference
from product_insight.utils.logger import get_logger
from product_insight.utils.retry import InputRejectedError

logger = get_logger(__name__)


class ValidationError(InputRejectedError):
    """Custom validation error."""

    def __init__(self, code: str, message: str, details: Optional[dict] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationService:
    """Service for validating product input."""

    NAME_MAX_LENGTH = 200
    LINE_SEPARATORS = re.compile(r"[,;\t]")

    def validate_reference(self, identifier: str, name: Optional[str] = None) -> ProductReference:
        """Validate one identifier (and optional name) into a reference."""
        identifier = self.sanitize_text(identifier or "", max_length=self.NAME_MAX_LENGTH)
        if not identifier:
            raise ValidationError(
                code="EMPTY_IDENTIFIER",
                message="Product identifier must not be empty",
            )
        clean_name = self.sanitize_text(name, max_length=self.NAME_MAX_LENGTH) if name else None
        try:
            return ProductReference.from_input(identifier, clean_name)
        except PydanticValidationError as e:
            logger.error("Product input validation failed", error=str(e))
            raise ValidationError(
                code="INVALID_INPUT_FORMAT",
                message=f"Invalid product input: {e}",
                details={"identifier": identifier},
            ) from e

    def parse_bulk(self, lines: Iterable[str]) -> list[ProductReference]:
        """
        Parse one product per line, ``identifier[,name]``.

        Blank lines and ``#`` comments are skipped; repeated identifiers keep
        their first occurrence.
        """
        references: list[ProductReference] = []
        seen: set[str] = set()
        for line_number, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            parts = self.LINE_SEPARATORS.split(line, maxsplit=1)
            identifier = parts[0].strip()
            name = parts[1].strip() if len(parts) > 1 else None
            try:
                reference = self.validate_reference(identifier, name)
            except ValidationError as e:
                logger.warning("Skipping invalid input line", line=line_number, error=e.message)
                continue
            if reference.identifier in seen:
                continue
            seen.add(reference.identifier)
            references.append(reference)
        return references

    def sanitize_text(self, text: Any, max_length: int = 1000) -> str:
        """Sanitize and truncate text content."""
        sanitized = re.sub(r"<[^>]+>", "", str(text))
        sanitized = re.sub(r"\s+", " ", sanitized).strip()
        return sanitized[:max_length] if len(sanitized) > max_length else sanitized
