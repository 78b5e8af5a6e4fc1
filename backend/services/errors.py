"""
Error taxonomy for the conversion pipelines.

Services raise these; only the HTTP layer decides which status code they map to.
"""


class ConversionError(Exception):
    """Base class for every failure a conversion pipeline reports."""
    kind = 'conversion'


class ValidationError(ConversionError):
    """The request is missing a prompt or a file, or has a malformed field."""
    kind = 'validation'


class ConfigurationError(ConversionError):
    """A required setting (e.g. the generation service credential) is absent."""
    kind = 'configuration'


class UpstreamServiceError(ConversionError):
    """The music generation service failed."""
    kind = 'upstream'

    def __init__(self, message: str, status_code: int = None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TranscriptionError(ConversionError):
    """basic-pitch failed, timed out, or produced no readable MIDI file."""
    kind = 'transcription'


class ScratchFileError(ConversionError):
    """Reading or writing a scratch file failed."""
    kind = 'io'
