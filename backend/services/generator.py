"""
Music generation service using the ElevenLabs music API.
"""
import logging

from elevenlabs.client import ElevenLabs
from elevenlabs.core.api_error import ApiError

from services.errors import UpstreamServiceError

logger = logging.getLogger(__name__)


class MusicGenerator:
    """Turns a text prompt into audio bytes."""

    def __init__(self, api_key: str, client=None):
        self.client = client or ElevenLabs(api_key=api_key)

    def compose(self, prompt: str, music_length_ms: int) -> bytes:
        """
        Generate music for ``prompt`` and drain the audio stream into memory.

        Raises:
            UpstreamServiceError: for any failure of the service, carrying the
                upstream HTTP status and response body when known.
        """
        logger.info(f"Generating {music_length_ms} ms of music for prompt: {prompt}")
        try:
            stream = self.client.music.compose(
                prompt=prompt,
                music_length_ms=music_length_ms,
            )
            audio = b''.join(chunk for chunk in stream)
        except ApiError as e:
            raise UpstreamServiceError(
                f"Music generation failed with status {e.status_code}: {e.body}",
                status_code=e.status_code,
                body=e.body,
            ) from e
        except Exception as e:
            raise UpstreamServiceError(f"Music generation failed: {e}") from e

        logger.info(f"Received {len(audio)} bytes of audio")
        return audio
