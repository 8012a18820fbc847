"""Data models for parsed scores and their laid-out rendering."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

#: Beat length of each duration symbol (quarter note = 1 beat).
DURATION_BEATS: Final[dict[str, float]] = {
    "w": 4.0,
    "h": 2.0,
    "q": 1.0,
    "8": 0.5,
    "16": 0.25,
}

CLEFS: Final[tuple[str, ...]] = ("treble", "bass", "alto", "tenor")


# ----------------------------------------------------------------------
# Parser output
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ChordAccidental:
    """An accidental attached to one key of a chord, by key index."""

    key_index: int
    accidental: str


@dataclass(frozen=True)
class Note:
    """
    A single note or chord at one position in a part.

    Attributes:
        keys:         Pitch strings in insertion order, e.g. ``("c#/4", "e/4")``.
        duration:     Duration symbol: ``w``, ``h``, ``q``, ``8`` or ``16``.
        time:         Onset in beats from the start of the part.
        accidental:   Accidental of ``keys[0]`` (``"#"`` or ``"b"``).
        accidentals:  Accidentals of chord tones added after ``keys[0]``.
        dynamic:      First dynamic marking found in the note's notations.
        articulation: First articulation marking found in the note's notations.
        slur:         ``start``, ``stop`` or ``continue``.
    """

    keys: tuple[str, ...]
    duration: str
    time: float
    accidental: str | None = None
    accidentals: tuple[ChordAccidental, ...] = ()
    dynamic: str | None = None
    articulation: str | None = None
    slur: str | None = None

    @property
    def beats(self) -> float:
        return DURATION_BEATS.get(self.duration, 1.0)

    @property
    def is_chord(self) -> bool:
        return len(self.keys) > 1


@dataclass(frozen=True)
class Direction:
    """A text direction (``<words>``) captured in a measure."""

    measure_index: int
    text: str
    placement: str = "above"
    time: float = 0.0


@dataclass(frozen=True)
class Part:
    """One staff line: a single-staff instrument or one staff of a grand staff."""

    id: str
    name: str
    clef: str
    notes: tuple[Note, ...] = ()
    directions: tuple[Direction, ...] = ()


@dataclass(frozen=True)
class MusicData:
    """Everything the layout and playback stages need from one MusicXML file."""

    key_signature: str = "C"
    time_signature: str = "4/4"
    beats_per_measure: int = 4
    beat_unit: int = 4
    work_title: str = "Untitled Piece"
    composer: str = "Unknown composer"
    parts: tuple[Part, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def total_notes(self) -> int:
        return sum(len(part.notes) for part in self.parts)


# ----------------------------------------------------------------------
# Layout output
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class RenderableNote:
    """A note as handed to the rendering library: sorted keys plus modifiers."""

    keys: tuple[str, ...]
    duration: str
    clef: str
    accidentals: tuple[ChordAccidental, ...] = ()
    annotation: str | None = None
    articulation_code: str | None = None


@dataclass(frozen=True)
class MeasureMeta:
    """Horizontal span of one measure column, in pixels."""

    index: int
    x_start: float
    x_end: float
    width: float


@dataclass
class NoteRenderInfo:
    """Join between musical time and screen space for one rendered note."""

    note: Note
    time: float
    x: float
    part_index: int
    measure_index: int
    note_index: int
    y: float = 0.0


@dataclass(frozen=True)
class GlyphSpan:
    """A beam or slur drawn across several notes of one measure."""

    kind: str
    x_start: float
    x_end: float
    part_index: int
    measure_index: int
    note_indices: tuple[int, ...] = ()


@dataclass(frozen=True)
class StavePlacement:
    """Where one measure of one part is drawn and what it contains."""

    part_index: int
    measure_index: int
    x: float
    y: float
    width: float
    clef: str
    key_signature: str | None = None
    time_signature: str | None = None
    directions: tuple[Direction, ...] = ()
    notes: tuple[RenderableNote, ...] = ()

    @property
    def is_first(self) -> bool:
        return self.measure_index == 0


@dataclass(frozen=True)
class StaveConnector:
    """A brace or barline joining the two staves of a grand staff."""

    kind: str
    measure_index: int
    top_part: int = 0
    bottom_part: int = 1


@dataclass
class LayoutResult:
    """Output of one layout pass; rebuilt on every load or reset."""

    measures: list[MeasureMeta] = field(default_factory=list)
    notes: list[NoteRenderInfo] = field(default_factory=list)
    beams: list[GlyphSpan] = field(default_factory=list)
    slurs: list[GlyphSpan] = field(default_factory=list)
    staves: list[StavePlacement] = field(default_factory=list)
    connectors: list[StaveConnector] = field(default_factory=list)
    total_width: float = 0.0
    height: float = 0.0
    layout_errors: list[tuple[int, int]] = field(default_factory=list)
