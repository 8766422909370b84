# errors.py


class CardSnapError(Exception):
    """Base class for every error raised by the card engine."""


class MissingCredential(CardSnapError):
    def __init__(self, message: str = "API key is missing. Please add it in Settings."):
        super().__init__(message)


class ExtractionError(CardSnapError):
    """The vision model call failed or returned something unusable."""


class MirrorError(CardSnapError):
    """The remote mirror rejected or dropped a record."""


class StorageCorruption(CardSnapError):
    """The persisted card collection could not be parsed."""


class StaleRevision(CardSnapError):
    def __init__(self, card_id: str, incoming: int, stored: int):
        super().__init__(f"card {card_id}: revision {incoming} is older than stored {stored}")
        self.card_id = card_id
        self.incoming = incoming
        self.stored = stored
