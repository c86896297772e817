"""imageprep error hierarchy.

All custom exceptions inherit from ImagePrepError, so callers can catch
the base class for blanket handling or a subclass for targeted recovery.
"""


class ImagePrepError(Exception):
    """Base exception for all imageprep errors."""


class ConfigError(ImagePrepError):
    """Raised when configuration loading, validation or wiring fails."""


class TemplateParseError(ImagePrepError):
    """Raised when a template cannot be parsed into an element tree."""


class EditError(ImagePrepError):
    """Raised when a text edit is out of bounds, overlaps another, or is applied twice."""


class ConversionError(ImagePrepError):
    """Raised by an image codec when reading or writing an image fails."""
