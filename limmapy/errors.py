"""
Exception types for limmapy.

Both error kinds are fatal to a run: a pipeline either completes or aborts
with a message naming the offending gene, contrast, group or sample.
"""


class LimmaPyError(Exception):
    """Base class for limmapy errors."""


class ConfigurationError(LimmaPyError, ValueError):
    """Invalid contrast or group reference, or a malformed design."""


class DataError(LimmaPyError, ValueError):
    """Unidentifiable model, non-finite input, or mismatched sample keys."""
