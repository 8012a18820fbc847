"""Audio triggers: turns passed notes into synthesizer events and MIDI recordings."""

from __future__ import annotations

import logging
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Final, Sequence

from midiutil import MIDIFile

from sheetroll.score_models import Note

logger = logging.getLogger(__name__)

#: Duration symbol -> synthesizer duration token.
DURATION_TOKENS: Final[dict[str, str]] = {
    "w": "1n",
    "h": "2n",
    "q": "4n",
    "8": "8n",
    "16": "16n",
}

#: Synthesizer duration token -> length in beats.
TOKEN_BEATS: Final[dict[str, float]] = {
    "1n": 4.0,
    "2n": 2.0,
    "4n": 1.0,
    "8n": 0.5,
    "16n": 0.25,
}

STEP_TO_SEMITONE: Final[dict[str, int]] = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}
ACCIDENTAL_SEMITONES: Final[dict[str, int]] = {"": 0, "#": 1, "b": -1}

_PITCH_NAME = re.compile(r"^([A-G])([#b]?)(-?\d+)$")


def key_to_pitch_name(key: str) -> str:
    """
    Convert a ``"step[acc]/octave"`` key to scientific pitch notation.

    ``"c/4"`` -> ``"C4"``, ``"d#/5"`` -> ``"D#5"``, ``"eb/3"`` -> ``"Eb3"``.
    The step is upper-cased; the flat sign stays a lower-case ``b``.
    """
    name, _, octave = key.partition("/")
    return f"{name[:1].upper()}{name[1:]}{octave}"


def pitch_name_to_midi(pitch_name: str) -> int:
    """
    Convert scientific pitch notation to a MIDI note number (C4 = 60).

    Raises:
        ValueError: If ``pitch_name`` is not of the form ``C4``, ``D#5`` or ``Eb3``.
    """
    match = _PITCH_NAME.match(pitch_name)
    if not match:
        raise ValueError(f"Unrecognised pitch name '{pitch_name}'.")
    step, accidental, octave = match.groups()
    return (int(octave) + 1) * 12 + STEP_TO_SEMITONE[step] + ACCIDENTAL_SEMITONES[accidental]


def key_to_midi(key: str) -> int:
    """Convert a ``"step[acc]/octave"`` key directly to a MIDI note number."""
    return pitch_name_to_midi(key_to_pitch_name(key))


@dataclass(frozen=True)
class NoteTrigger:
    """One audio event fired when a note passes the guide line."""

    note_index: int
    pitches: tuple[str, ...]
    duration: str


def build_trigger(note_index: int, note: Note) -> NoteTrigger:
    """Build the synthesizer event for ``note`` (all chord tones at once)."""
    return NoteTrigger(
        note_index=note_index,
        pitches=tuple(key_to_pitch_name(key) for key in note.keys),
        duration=DURATION_TOKENS.get(note.duration, "4n"),
    )


# ----------------------------------------------------------------------
# Synthesizers
# ----------------------------------------------------------------------


class Synth(ABC):
    """Abstract synthesizer: plays a set of pitches for a duration token."""

    @abstractmethod
    def trigger_attack_release(self, pitches: Sequence[str], duration: str) -> None:
        """Start the given pitches now and release them after ``duration``."""


class RecordingSynth(Synth):
    """Keeps every triggered event in memory, in trigger order."""

    def __init__(self) -> None:
        self.events: list[tuple[tuple[str, ...], str]] = []

    def trigger_attack_release(self, pitches: Sequence[str], duration: str) -> None:
        self.events.append((tuple(pitches), duration))


class MidiRecorder(Synth):
    """
    Records triggered notes into a Standard MIDI File.

    Track layout (Format 1)
    -----------------------
    Track 0 - conductor track (tempo and time signature, no notes)
    Track 1 - every triggered note, all parts merged

    Timing
    ------
    Each trigger is stamped with the recorder's clock; the first trigger is
    beat 0. Seconds are converted to beats at the recorder's fixed tempo:
    beats = seconds * (tempo / 60). Live tempo changes therefore show up as
    denser or sparser notes rather than as tempo events.
    """

    DEFAULT_TEMPO = 100
    DEFAULT_VELOCITY = 80
    TRACK_CONDUCTOR = 0
    TRACK_NOTES = 1
    CHANNEL = 0

    def __init__(
        self,
        tempo: int = DEFAULT_TEMPO,
        velocity: int = DEFAULT_VELOCITY,
        time_signature: tuple[int, int] = (4, 4),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            tempo:          Tempo written to the conductor track, in BPM.
            velocity:       MIDI note-on velocity for every note.
            time_signature: ``(beats, beat_unit)`` written to the conductor track.
            clock:          Seconds source used to stamp triggers.
        """
        self.tempo = tempo
        self.velocity = velocity
        self.time_signature = time_signature
        self.clock = clock
        self._origin: float | None = None
        self.notes: list[tuple[int, float, float]] = []

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _seconds_to_beats(self, seconds: float) -> float:
        """Convert a time in seconds to beats at the recorder's tempo."""
        return seconds * (self.tempo / 60.0)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def trigger_attack_release(self, pitches: Sequence[str], duration: str) -> None:
        now = self.clock()
        if self._origin is None:
            self._origin = now
        start_beat = self._seconds_to_beats(now - self._origin)
        length = TOKEN_BEATS.get(duration, 1.0)
        for pitch_name in pitches:
            try:
                midi_pitch = pitch_name_to_midi(pitch_name)
            except ValueError:
                logger.warning("Skipping unplayable pitch '%s'", pitch_name)
                continue
            self.notes.append((midi_pitch, start_beat, length))

    def export(self, output_path: str) -> None:
        """
        Write the recorded notes to a Standard MIDI File.

        Raises:
            OSError: If the output file cannot be opened for writing.
        """
        midi = MIDIFile(numTracks=2, removeDuplicates=False, deinterleave=False)

        midi.addTempo(self.TRACK_CONDUCTOR, 0, self.tempo)
        beats, beat_unit = self.time_signature
        midi.addTimeSignature(self.TRACK_CONDUCTOR, 0, beats, int(math.log2(beat_unit)), 24)
        midi.addTrackName(self.TRACK_NOTES, 0, "Playback")

        for pitch, start_beat, length in self.notes:
            midi.addNote(
                track=self.TRACK_NOTES,
                channel=self.CHANNEL,
                pitch=pitch,
                time=start_beat,
                duration=length,
                volume=self.velocity,
            )

        with open(output_path, "wb") as f:
            midi.writeFile(f)
        logger.info("Wrote %d recorded note(s) to %s", len(self.notes), output_path)
