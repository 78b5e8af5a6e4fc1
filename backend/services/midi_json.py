"""
MIDI → JSON normalization.

Turns the raw bytes of a MIDI file into the JSON document returned to clients.
This is a structural transliteration: every track, note, tempo and time
signature event in the file shows up in the output, in file order.
"""
import io
import logging
from bisect import bisect_right
from collections import defaultdict, deque

import mido
import pretty_midi

from services.errors import TranscriptionError

logger = logging.getLogger(__name__)

DEFAULT_TEMPO = 500000
DRUM_CHANNEL = 9


def _absolute(track: mido.MidiTrack):
    """Yield (absolute tick, message) for every message of a track."""
    tick = 0
    for msg in track:
        tick += msg.time
        yield tick, msg


def _track_name(track: mido.MidiTrack) -> str:
    for msg in track:
        if msg.type == 'track_name':
            return msg.name
    return ''


def _meta_events(midi_file: mido.MidiFile, event_type: str) -> list:
    """(absolute tick, message) pairs for ``event_type`` across all tracks, by tick."""
    events = []
    for track in midi_file.tracks:
        events.extend((tick, msg) for tick, msg in _absolute(track) if msg.type == event_type)
    events.sort(key=lambda e: e[0])
    return events


class TempoMap:
    """Tick → seconds conversion using the tempo changes of every track."""

    def __init__(self, midi_file: mido.MidiFile):
        self.ppq = midi_file.ticks_per_beat
        self.ticks = [0]
        self.seconds = [0.0]
        self.tempos = [DEFAULT_TEMPO]
        for tick, msg in _meta_events(midi_file, 'set_tempo'):
            if tick == self.ticks[-1]:
                self.tempos[-1] = msg.tempo
                continue
            self.seconds.append(self.to_seconds(tick))
            self.ticks.append(tick)
            self.tempos.append(msg.tempo)

    def to_seconds(self, tick: int) -> float:
        i = bisect_right(self.ticks, tick) - 1
        elapsed = tick - self.ticks[i]
        return self.seconds[i] + elapsed * self.tempos[i] / (1e6 * self.ppq)


def _tempos(midi_file: mido.MidiFile, tempo_map: TempoMap) -> list:
    return [
        {
            'bpm': float(mido.tempo2bpm(msg.tempo)),
            'time': tempo_map.to_seconds(tick),
        }
        for tick, msg in _meta_events(midi_file, 'set_tempo')
    ]


def _time_signatures(midi_file: mido.MidiFile) -> list:
    ppq = midi_file.ticks_per_beat
    signatures = []
    previous = None
    for tick, msg in _meta_events(midi_file, 'time_signature'):
        if previous is None:
            measures = 0
        else:
            prev_tick, prev_num, prev_den, prev_measures = previous
            beats = (tick - prev_tick) / ppq
            measures = prev_measures + beats / prev_num / (prev_den / 4)
        signatures.append({
            'timeSignature': [msg.numerator, msg.denominator],
            'measures': measures,
        })
        previous = (tick, msg.numerator, msg.denominator, measures)
    return signatures


def _note_ticks(track: mido.MidiTrack) -> list:
    """
    Pair note-ons with note-offs per (channel, pitch), first in first out.

    Returns [channel, pitch, velocity, on_tick, off_tick] lists in note-on order.
    Zero-length notes are kept; a note never switched off ends where it starts.
    """
    notes = []
    sounding = defaultdict(deque)
    for tick, msg in _absolute(track):
        if msg.type == 'note_on' and msg.velocity > 0:
            note = [msg.channel, msg.note, msg.velocity, tick, tick]
            notes.append(note)
            sounding[(msg.channel, msg.note)].append(note)
        elif msg.type in ('note_on', 'note_off'):
            pending = sounding[(msg.channel, msg.note)]
            if pending:
                pending.popleft()[4] = tick
    return notes


def _instrument_name(track: mido.MidiTrack, notes: list) -> str:
    program = next((msg for msg in track if msg.type == 'program_change'), None)
    channel = program.channel if program is not None else (notes[0][0] if notes else 0)
    if channel == DRUM_CHANNEL:
        return 'Drums'
    return pretty_midi.program_to_instrument_name(program.program if program is not None else 0)


def _track(track: mido.MidiTrack, notes: list, tempo_map: TempoMap) -> dict:
    json_notes = []
    for channel, pitch, velocity, on_tick, off_tick in notes:
        start = tempo_map.to_seconds(on_tick)
        json_notes.append({
            'midi': pitch,
            'time': start,
            'duration': tempo_map.to_seconds(off_tick) - start,
            'velocity': velocity / 127,
            'name': pretty_midi.note_number_to_name(pitch),
        })
    return {
        'name': _track_name(track),
        'instrument': _instrument_name(track, notes),
        'notes': json_notes,
    }


def midi_to_json(midi_bytes: bytes) -> dict:
    """
    Normalize a MIDI file into the client-facing document.

    One entry per MIDI track, except that a note-less first track of a
    format 1 file (the conductor track) is left out.

    Args:
        midi_bytes: Raw contents of a standard MIDI file.

    Returns:
        dict with keys: 'header', 'duration', 'tracks'

    Raises:
        TranscriptionError: if the bytes are not a readable MIDI file.
    """
    try:
        midi_file = mido.MidiFile(file=io.BytesIO(midi_bytes))
    except (OSError, EOFError, ValueError, KeyError, IndexError) as e:
        raise TranscriptionError(f"Could not parse MIDI file: {e}") from e

    tempo_map = TempoMap(midi_file)
    tracks = []
    for index, track in enumerate(midi_file.tracks):
        notes = _note_ticks(track)
        if index == 0 and midi_file.type == 1 and not notes:
            continue
        tracks.append(_track(track, notes, tempo_map))

    ends = [n['time'] + n['duration'] for t in tracks for n in t['notes']]
    document = {
        'header': {
            'name': _track_name(midi_file.tracks[0]) if midi_file.tracks else '',
            'ppq': midi_file.ticks_per_beat,
            'tempos': _tempos(midi_file, tempo_map),
            'timeSignatures': _time_signatures(midi_file),
        },
        'duration': max(ends, default=0.0),
        'tracks': tracks,
    }

    note_count = sum(len(t['notes']) for t in tracks)
    logger.info(f"Normalized MIDI: {len(tracks)} tracks, {note_count} notes")
    return document
