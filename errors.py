# errors.py


class ConversionError(Exception):
    """Base class for everything that aborts a conversion run."""


class ValidationError(ConversionError):
    """Bad input: missing path, wrong dimensions, no frames."""


class FrameFormatError(ValidationError):
    """A frame is not 1-bit while strict mode is on."""

    def __init__(self, message: str, index: int = -1):
        super().__init__(message)
        self.index = index


class DependencyError(ConversionError):
    """An external tool is not installed."""


class ToolError(ConversionError):
    """An external tool ran but failed."""


class OutputError(ConversionError):
    """Output directory or file could not be written."""
