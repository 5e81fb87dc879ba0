"""Error taxonomy for the gateway.

Every error carries the HTTP status it maps to; the server renders them as
``{"error": {"message": ..., "type": "invalid_request_error"}}``.
"""

ERROR_TYPE = "invalid_request_error"


class GatewayError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def error_type(self) -> str:
        return ERROR_TYPE

    def to_dict(self) -> dict:
        return {"error": {"message": self.message, "type": self.error_type}}


class InvalidRequest(GatewayError):
    """Missing or empty audio, unparseable form data, bad field values."""

    status_code = 400


class UnsupportedCombinationError(GatewayError):
    """The resolved provider cannot produce the requested format/streaming mode."""

    status_code = 400


class AudioDecodeError(GatewayError):
    """The upload could not be opened or decoded as audio."""

    status_code = 400


class AudioConversionError(GatewayError):
    """Decoded audio could not be converted to 16kHz mono float PCM."""

    status_code = 400


class ModelUnavailable(GatewayError):
    """The model resolver reports no ready model for the provider."""

    status_code = 500


class EngineInitError(GatewayError):
    """A model artifact is missing, unreadable or failed to load."""

    status_code = 500


class TranscriptionFailure(GatewayError):
    """The backend engine failed while decoding audio."""

    status_code = 500
