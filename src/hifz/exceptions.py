"""Exceptions raised by the memorization engine."""


class HifzError(Exception):
    """Base class for all engine errors."""


class StageTransitionError(HifzError):
    """Raised when a stage transition is requested that the machine does not allow."""


class RecognitionError(HifzError):
    """Raised when speech recognition fails while an attempt is running."""


class RecognitionUnsupportedError(RecognitionError):
    """Raised when speech recognition is unavailable or permission was denied."""


class TextNotFoundError(HifzError):
    """Raised when the text of an ayah cannot be found."""

    def __init__(self, surah: int, ayah: int):
        super().__init__(f"Text for {surah}:{ayah} not found")
        self.surah = surah
        self.ayah = ayah
