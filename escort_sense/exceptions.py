"""
Error kinds raised by escort_sense
"""


class InvalidInput(ValueError):
    """
    Raised when a caller violates an input contract: non-finite numbers,
    coordinates outside the globe, malformed arrays or parameters.
    Degraded but well-formed signals never raise; they yield neutral results.
    """
