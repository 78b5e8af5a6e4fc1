"""
Conversion pipelines: prompt → generated audio → MIDI JSON, and upload → MIDI JSON.
"""
import os
import logging
from dataclasses import dataclass

from services.errors import ConfigurationError, ValidationError
from services.generator import MusicGenerator
from services.midi_json import midi_to_json
from services.transcriber import expected_midi_path, read_midi

logger = logging.getLogger(__name__)

DEFAULT_MUSIC_LENGTH_MS = 30000
DEFAULT_UPLOAD_EXT = '.mp3'
INSTRUMENTAL_SUFFIX = ' (instrumental version)'


@dataclass
class ConversionRequest:
    prompt: str
    target_duration_ms: int = DEFAULT_MUSIC_LENGTH_MS
    force_instrumental: bool = True

    def __post_init__(self):
        if not isinstance(self.prompt, str) or not self.prompt:
            raise ValidationError('Prompt is required')
        length = self.target_duration_ms
        if isinstance(length, bool) or not isinstance(length, int) or length <= 0:
            raise ValidationError('musicLengthMs must be a positive integer')
        if not isinstance(self.force_instrumental, bool):
            raise ValidationError('forceInstrumental must be a boolean')

    @classmethod
    def from_json(cls, payload) -> 'ConversionRequest':
        """Build a request from the JSON body of ``/convert-from-prompt``."""
        if not isinstance(payload, dict):
            raise ValidationError('Prompt is required')

        # 0 and null fall back to the default length, like an omitted field
        length = payload.get('musicLengthMs') or DEFAULT_MUSIC_LENGTH_MS
        force_instrumental = payload.get('forceInstrumental')
        if force_instrumental is None:
            force_instrumental = True

        return cls(
            prompt=payload.get('prompt'),
            target_duration_ms=length,
            force_instrumental=force_instrumental,
        )

    @property
    def generation_prompt(self) -> str:
        if self.force_instrumental:
            return f"{self.prompt}{INSTRUMENTAL_SUFFIX}"
        return self.prompt


def transcribe_audio(audio_path: str, scratch, transcriber) -> dict:
    """
    Shared transcription step: audio file → MIDI file → JSON document.

    The MIDI file is registered with the scratch session before basic-pitch
    runs, so a partial output is removed along with the audio file.
    """
    scratch.track(expected_midi_path(audio_path, scratch.directory))
    midi_path = transcriber.transcribe(audio_path, scratch.directory)
    scratch.track(midi_path)
    return midi_to_json(read_midi(midi_path))


def convert_from_prompt(request: ConversionRequest, api_key: str, transcriber, scratch_space,
                        generator_factory=MusicGenerator) -> dict:
    """
    Generate music from a prompt and transcribe it to MIDI JSON.

    Raises:
        ConfigurationError: if ``api_key`` is not set. Nothing external is called.
        UpstreamServiceError: if music generation fails.
        TranscriptionError: if basic-pitch fails.
        ScratchFileError: if scratch files cannot be written.
    """
    if not api_key:
        raise ConfigurationError('Music API key is not configured on the server')

    prompt = request.generation_prompt
    generator = generator_factory(api_key)
    audio = generator.compose(prompt, request.target_duration_ms)

    with scratch_space.session('prompt') as scratch:
        logger.info(f"[{scratch.token}] Transcribing generated audio for prompt: {request.prompt}")
        audio_path = scratch.write('audio', audio, '.mp3')
        midi = transcribe_audio(audio_path, scratch, transcriber)

    return {
        'success': True,
        'prompt': request.prompt,
        'midi': midi,
    }


def convert_from_upload(filename: str, data: bytes, transcriber, scratch_space) -> dict:
    """
    Transcribe an uploaded audio file to MIDI JSON.

    The file is written verbatim, keeping its extension (``.mp3`` if it has none).
    """
    if not data:
        raise ValidationError('Uploaded audio file is empty')

    ext = os.path.splitext(filename or '')[1] or DEFAULT_UPLOAD_EXT

    with scratch_space.session('upload') as scratch:
        logger.info(f"[{scratch.token}] Transcribing upload {filename} ({len(data)} bytes)")
        audio_path = scratch.write('upload', data, ext)
        midi = transcribe_audio(audio_path, scratch, transcriber)

    return {
        'success': True,
        'filename': filename,
        'midi': midi,
    }
