"""
Shared fixtures: in-memory MIDI files and fake collaborators.
"""
import io
import os

import mido

from services.errors import TranscriptionError
from services.transcriber import expected_midi_path

TICKS_PER_BEAT = 480


def _track(name, events):
    """Build a track from (absolute tick, message) pairs."""
    track = mido.MidiTrack()
    track.append(mido.MetaMessage('track_name', name=name, time=0))
    last = 0
    for tick, msg in sorted(events, key=lambda e: e[0]):
        track.append(msg.copy(time=tick - last))
        last = tick
    track.append(mido.MetaMessage('end_of_track', time=0))
    return track


def _note(channel, pitch, velocity, on, off):
    return [
        (on, mido.Message('note_on', channel=channel, note=pitch, velocity=velocity)),
        (off, mido.Message('note_off', channel=channel, note=pitch, velocity=0)),
    ]


def song_midi_bytes() -> bytes:
    """
    Two instrument tracks with a tempo change and a time signature change.

    120 bpm until tick 1920 (2.0 s), then 150 bpm. 4/4 until tick 3840, then 3/4.
    The lead's notes overlap so note-off order differs from note-on order.
    """
    mid = mido.MidiFile(type=1, ticks_per_beat=TICKS_PER_BEAT)
    mid.tracks.append(_track('Test Song', [
        (0, mido.MetaMessage('set_tempo', tempo=500000)),
        (0, mido.MetaMessage('time_signature', numerator=4, denominator=4)),
        (1920, mido.MetaMessage('set_tempo', tempo=400000)),
        (3840, mido.MetaMessage('time_signature', numerator=3, denominator=4)),
    ]))
    mid.tracks.append(_track('Lead', (
        [(0, mido.Message('program_change', channel=0, program=0))]
        + _note(0, 60, 127, 0, 480)
        + _note(0, 67, 100, 240, 1200)
        + _note(0, 64, 64, 480, 960)
    )))
    mid.tracks.append(_track('Bass', (
        [(0, mido.Message('program_change', channel=1, program=33))]
        + _note(1, 45, 100, 1920, 2400)
    )))

    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


def drum_midi_bytes() -> bytes:
    mid = mido.MidiFile(type=1, ticks_per_beat=TICKS_PER_BEAT)
    mid.tracks.append(_track('', [(0, mido.MetaMessage('set_tempo', tempo=500000))]))
    mid.tracks.append(_track('Kit', _note(9, 36, 90, 0, 240)))
    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


def empty_midi_bytes() -> bytes:
    mid = mido.MidiFile(type=1, ticks_per_beat=220)
    mid.tracks.append(_track('', [(0, mido.MetaMessage('set_tempo', tempo=500000))]))
    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


def edge_case_midi_bytes() -> bytes:
    """
    Tracks that a lossy reader would mangle.

    Conductor at 120 bpm; a 240 bpm tempo lives on the Lead track at tick 480.
    Lead: a zero-length C4, a D4, then two overlapping E4s. Duo: notes on two
    channels. Silent: a named track without notes.
    """
    mid = mido.MidiFile(type=1, ticks_per_beat=TICKS_PER_BEAT)
    mid.tracks.append(_track('Edge Cases', [
        (0, mido.MetaMessage('set_tempo', tempo=500000)),
    ]))
    mid.tracks.append(_track('Lead', (
        [(480, mido.MetaMessage('set_tempo', tempo=250000))]
        + _note(0, 60, 100, 0, 0)
        + _note(0, 62, 100, 10, 490)
        + [
            (480, mido.Message('note_on', channel=0, note=64, velocity=100)),
            (720, mido.Message('note_on', channel=0, note=64, velocity=50)),
            (960, mido.Message('note_off', channel=0, note=64, velocity=0)),
            (1440, mido.Message('note_off', channel=0, note=64, velocity=0)),
        ]
    )))
    mid.tracks.append(_track('Duo', (
        [(0, mido.Message('program_change', channel=2, program=40))]
        + _note(2, 76, 80, 0, 480)
        + _note(3, 52, 80, 0, 480)
    )))
    mid.tracks.append(_track('Silent', []))
    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


class FakeTranscriber:
    """Stands in for basic-pitch: writes canned MIDI where basic-pitch would."""

    def __init__(self, midi_bytes: bytes = None, error: Exception = None, write_partial: bool = False):
        self.midi_bytes = midi_bytes if midi_bytes is not None else song_midi_bytes()
        self.error = error
        self.write_partial = write_partial
        self.calls = []

    def transcribe(self, audio_path: str, output_dir: str) -> str:
        self.calls.append((audio_path, output_dir, os.path.exists(audio_path)))
        midi_path = expected_midi_path(audio_path, output_dir)
        if self.write_partial or self.error is None:
            with open(midi_path, 'wb') as f:
                f.write(self.midi_bytes)
        if self.error is not None:
            raise self.error
        return midi_path


class FakeGenerator:
    """Stands in for the music generation service."""

    def __init__(self, audio: bytes = b'ID3fake-audio', error: Exception = None):
        self.audio = audio
        self.error = error
        self.calls = []

    def __call__(self, api_key: str):
        self.api_key = api_key
        return self

    def compose(self, prompt: str, music_length_ms: int) -> bytes:
        self.calls.append((prompt, music_length_ms))
        if self.error is not None:
            raise self.error
        return self.audio


def timeout_transcriber() -> FakeTranscriber:
    return FakeTranscriber(error=TranscriptionError('Transcription timed out after 120 seconds.'),
                           write_partial=True)


def leftover_files(root: str) -> list:
    """Every file or directory still under ``root``."""
    if not os.path.exists(root):
        return []
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        found.extend(os.path.join(dirpath, d) for d in dirnames)
        found.extend(os.path.join(dirpath, f) for f in filenames)
    return found
