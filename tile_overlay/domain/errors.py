# tile_overlay/domain/errors.py


class TileOverlayError(Exception):
    """Base class for every failure raised by the overlay engine."""


class DecodeError(TileOverlayError):
    """Malformed image bytes or base64 payload."""


class TemplateValidationError(TileOverlayError):
    """Rejected user input on an explicit edit call. The message is meant for display."""


class TemplateNotFoundError(TileOverlayError, KeyError):
    def __str__(self):
        return f"No template with key {self.args[0]!r}" if self.args else "Template not found"


class DocumentFormatError(TileOverlayError):
    """The import payload matches neither known document shape."""


class IdentityMismatchError(TileOverlayError):
    def __init__(self, whoami, accepted):
        self.whoami = whoami
        self.accepted = list(accepted)
        super().__init__(
            f"Template JSON 'whoami' ({whoami!r}) did not match any accepted identifiers: "
            f"{', '.join(self.accepted)}"
        )


class StorageWriteError(TileOverlayError):
    pass


class ReconstructionError(TileOverlayError):
    pass
