"""Exception hierarchy for VegRecog."""


class VegRecogError(Exception):
    """Base exception for VegRecog."""


class SignalError(VegRecogError):
    """Raised when cheap image signals cannot be read. Never surfaced to callers."""


class TilingError(VegRecogError):
    """Raised when an image cannot be split into zones."""


class SizeError(TilingError):
    """Raised when the image or its computed cells are too small to tile."""


class NoValidZonesError(TilingError):
    """Raised when tiling produced no usable zone."""


class ClassifierError(VegRecogError):
    """Raised when the whole-image classifier is unavailable or fails."""


class ImageDecodeError(VegRecogError):
    """Raised when image bytes cannot be decoded or exceed input limits."""


class AggregationError(VegRecogError):
    """Raised when zone results are malformed. Indicates a programming error."""
