"""
Custom exceptions for the archive relevance pipeline.

The pipeline is best-effort: content problems degrade to pass-through
behaviour instead of raising. These types exist for the boundaries where
a failure must be reported in a structured way (interpreter guard,
configuration loading, payload parsing). All of them inherit from
ArchiveRelevanceException so callers can catch a single base type.
"""


class ArchiveRelevanceException(Exception):
    """Base exception for all archive relevance errors."""


class ValidationError(ArchiveRelevanceException):
    """Input validation failed."""


class ConfigurationError(ArchiveRelevanceException):
    """Invalid or unreadable configuration."""


class InterpretationError(ArchiveRelevanceException):
    """Natural-language query interpretation failed."""


class PayloadParseError(ArchiveRelevanceException):
    """A refinement payload could not be parsed."""
