class DecodeError(ValueError):
    """
    Raised when a raw model output cannot be mapped onto rows of detections.
    """
