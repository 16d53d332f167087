"""
AutoKeystone - Custom Exceptions Module

This module defines custom exception classes for the failure modes of the
perspective correction engine. None of them is fatal: the orchestrator
catches every KeystoneError and degrades to "no change".
"""


class KeystoneError(Exception):
    """Base exception for all AutoKeystone errors.

    All custom exceptions should inherit from this class to allow
    catching any engine-specific error.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional technical details for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class DegenerateGeometryError(KeystoneError):
    """Raised when a geometric construct is undefined.

    Examples are a line through two coincident points or a null vantage
    point. Callers fall back to a no-op rather than propagating.
    """

    def __init__(self, reason: str, details: str | None = None) -> None:
        """Initialize the exception.

        Args:
            reason: What was degenerate
            details: Optional technical details (coordinates etc.)
        """
        self.reason = reason
        super().__init__(f"Degenerate geometry: {reason}", details=details)


class InsufficientDataError(KeystoneError):
    """Raised when there are fewer lines than a reliable fit needs."""

    def __init__(
        self,
        direction: str | None = None,
        required: int | None = None,
        available: int | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            direction: Line direction that lacks data ("vertical", "horizontal")
            required: Minimum number of lines needed
            available: Number of lines actually selected
        """
        self.direction = direction
        self.required = required
        self.available = available

        msg = "Not enough structure for automatic correction"
        if direction:
            msg += f" ({direction} lines)"

        details = None
        if required is not None and available is not None:
            details = f"required={required}, available={available}"

        super().__init__(msg, details=details)


class NonConvergenceError(KeystoneError):
    """Raised when the simplex optimizer hits its iteration cap."""

    def __init__(self, iterations: int, what: str = "parameter fit") -> None:
        """Initialize the exception.

        Args:
            iterations: Number of iterations performed
            what: Which optimization failed
        """
        self.iterations = iterations
        self.what = what
        super().__init__(f"{what} did not converge", details=f"iterations={iterations}")


class InsaneResultError(KeystoneError):
    """Raised when a fit converges to a physically implausible warp."""

    def __init__(self, growth_factor: float, limit: float) -> None:
        """Initialize the exception.

        Args:
            growth_factor: Output bounding box area divided by input area
            limit: Maximum accepted growth factor
        """
        self.growth_factor = growth_factor
        self.limit = limit
        super().__init__(
            "Fitted correction is implausible",
            details=f"area growth {growth_factor:.2f} > {limit:.2f}",
        )


class CropFitFailureError(KeystoneError):
    """Raised when automatic cropping fails or yields a degenerate box."""

    def __init__(self, reason: str) -> None:
        """Initialize the exception.

        Args:
            reason: Why the crop fit was rejected
        """
        self.reason = reason
        super().__init__(f"Automatic cropping failed: {reason}")


class StructureDetectionError(KeystoneError):
    """Raised when line detection finds no usable structure in the buffer."""

    def __init__(self, details: str | None = None) -> None:
        """Initialize the exception.

        Args:
            details: Optional technical details (buffer size, segment count)
        """
        super().__init__("Could not detect structural data in image", details=details)


class DataPendingError(KeystoneError):
    """Raised when no detection buffer is available yet."""

    def __init__(self, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            reason: Optional reason for the missing data
        """
        self.reason = reason
        super().__init__("Data pending", details=reason)


# Exception hierarchy summary:
# KeystoneError (base)
# ├── DegenerateGeometryError
# ├── InsufficientDataError
# ├── NonConvergenceError
# ├── InsaneResultError
# ├── CropFitFailureError
# ├── StructureDetectionError
# └── DataPendingError
