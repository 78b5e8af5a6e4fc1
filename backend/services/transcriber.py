"""
Audio-to-MIDI transcription service using the basic-pitch CLI (Spotify).
"""
import os
import logging
import subprocess

from services.errors import TranscriptionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120
MIDI_SUFFIX = '_basic_pitch.mid'


def expected_midi_path(audio_path: str, output_dir: str) -> str:
    """Path basic-pitch writes the MIDI file for ``audio_path`` to."""
    basename = os.path.splitext(os.path.basename(audio_path))[0]
    return os.path.join(output_dir, f"{basename}{MIDI_SUFFIX}")


class BasicPitchTranscriber:
    """Runs ``basic-pitch <output_dir> <audio_path> --save-midi`` in a subprocess."""

    def __init__(self, command: str = 'basic-pitch', timeout: float = DEFAULT_TIMEOUT):
        self.command = command
        self.timeout = timeout

    def transcribe(self, audio_path: str, output_dir: str) -> str:
        """
        Transcribe an audio file to MIDI.

        Args:
            audio_path: Path to the input audio file.
            output_dir: Directory basic-pitch writes its MIDI file into.

        Returns:
            Path of the MIDI file produced.

        Raises:
            TranscriptionError: on timeout, non-zero exit, missing executable,
                or when the expected MIDI file was not produced.
        """
        args = [self.command, output_dir, audio_path, '--save-midi']
        logger.info(f"Running {' '.join(args)}")

        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise TranscriptionError(
                f"{self.command} is not installed. Install it with: pip install basic-pitch"
            )
        except subprocess.TimeoutExpired:
            raise TranscriptionError(
                f"Transcription timed out after {self.timeout} seconds."
            )

        if result.stdout:
            logger.debug(f"basic-pitch output: {result.stdout}")
        if result.returncode != 0:
            logger.warning(f"basic-pitch stderr: {result.stderr}")
            raise TranscriptionError(
                f"basic-pitch exited with code {result.returncode}: {result.stderr.strip()[-500:]}"
            )

        midi_path = expected_midi_path(audio_path, output_dir)
        if not os.path.exists(midi_path):
            raise TranscriptionError(
                f"basic-pitch did not produce the expected MIDI file: {os.path.basename(midi_path)}"
            )
        return midi_path


def read_midi(midi_path: str) -> bytes:
    """Read the transcribed MIDI file, reporting failures as TranscriptionError."""
    try:
        with open(midi_path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise TranscriptionError(f"Could not read MIDI file: {e}") from e
