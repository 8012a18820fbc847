"""MeasureLayoutEngine: regroups parsed notes into aligned measures and places them."""

from __future__ import annotations

import logging
import math
from typing import Final, Sequence

from sheetroll.errors import LayoutError
from sheetroll.score_models import (
    DURATION_BEATS,
    ChordAccidental,
    GlyphSpan,
    LayoutResult,
    MeasureMeta,
    MusicData,
    Note,
    NoteRenderInfo,
    RenderableNote,
    StaveConnector,
    StavePlacement,
)
from sheetroll.stave_formatter import ProportionalFormatter, StaveFormatter

logger = logging.getLogger(__name__)

# Canvas geometry, in pixels.
CANVAS_MARGIN: Final[int] = 100
STAVE_X_START: Final[int] = 150
STAVE_Y_START: Final[int] = 60
STAVE_SPACING: Final[int] = 100

# Measure width = max(MIN_MEASURE_WIDTH, BASE_MEASURE_WIDTH + notes * NOTE_SPACING)
MIN_MEASURE_WIDTH: Final[int] = 180
BASE_MEASURE_WIDTH: Final[int] = 80
NOTE_SPACING: Final[int] = 40

#: Articulation tag -> VexFlow articulation code. Other articulations are not drawn.
ARTICULATION_CODES: Final[dict[str, str]] = {
    "staccato": "a.",
    "accent": "a>",
    "tenuto": "a-",
    "staccatissimo": "av",
    "marcato": "a^",
}

BEAMABLE_DURATIONS: Final[set[str]] = {"8", "16"}
STEP_ORDER: Final[str] = "cdefgab"


# ----------------------------------------------------------------------
# Pure helpers
# ----------------------------------------------------------------------


def segment_measures(notes: Sequence[Note], beats_per_measure: int) -> list[list[Note]]:
    """
    Greedily group a part's notes into measures of ``beats_per_measure`` beats.

    A note that would overflow a non-empty measure closes it and starts the
    next one; a measure closes as soon as it is full. A note longer than the
    capacity therefore sits alone in its own measure, and no note is ever split.
    """
    measures: list[list[Note]] = []
    current: list[Note] = []
    beats = 0.0

    for note in notes:
        length = DURATION_BEATS.get(note.duration, 1.0)
        if beats + length > beats_per_measure and current:
            measures.append(current)
            current = []
            beats = 0.0
        current.append(note)
        beats += length
        if beats >= beats_per_measure:
            measures.append(current)
            current = []
            beats = 0.0

    if current:
        measures.append(current)
    return measures


def measure_width(note_count: int) -> int:
    """Pixel width of a measure holding ``note_count`` notes."""
    return max(MIN_MEASURE_WIDTH, BASE_MEASURE_WIDTH + note_count * NOTE_SPACING)


def column_widths(part_measures: Sequence[Sequence[Sequence[Note]]]) -> list[int]:
    """Width of each measure column: the widest part at that column wins."""
    column_count = max((len(measures) for measures in part_measures), default=0)
    widths: list[int] = []
    for index in range(column_count):
        widths.append(
            max(
                (measure_width(len(m[index])) for m in part_measures if index < len(m)),
                default=MIN_MEASURE_WIDTH,
            )
        )
    return widths


def accumulate_widths(widths: Sequence[int]) -> list[int]:
    """Left offset of each column relative to the first one."""
    offsets: list[int] = []
    running = 0
    for width in widths:
        offsets.append(running)
        running += width
    return offsets


def key_sort_value(key: str) -> tuple[int, int]:
    """Sort key for ``"step[acc]/octave"``: octave first, then scale step."""
    name, _, octave = key.partition("/")
    try:
        octave_value = int(octave)
    except ValueError:
        octave_value = 0
    step = name[:1].lower()
    return octave_value, STEP_ORDER.index(step) if step and step in STEP_ORDER else len(STEP_ORDER)


def sort_chord(note: Note) -> tuple[tuple[str, ...], tuple[ChordAccidental, ...]]:
    """
    Sort a note's keys bottom-to-top and move its accidentals with them.

    ``Note.accidental`` belongs to ``keys[0]`` and ``Note.accidentals`` hold
    insertion-order indices; both are re-pointed at the sorted positions.
    """
    order = sorted(range(len(note.keys)), key=lambda i: key_sort_value(note.keys[i]))
    position = {original: sorted_index for sorted_index, original in enumerate(order)}

    pending: list[ChordAccidental] = []
    if note.accidental:
        pending.append(ChordAccidental(0, note.accidental))
    pending.extend(note.accidentals)

    accidentals = sorted(
        (
            ChordAccidental(position[acc.key_index], acc.accidental)
            for acc in pending
            if acc.key_index in position
        ),
        key=lambda acc: acc.key_index,
    )
    return tuple(note.keys[i] for i in order), tuple(accidentals)


def to_renderable(note: Note, clef: str) -> RenderableNote:
    """Build the note-with-modifiers handed to the rendering library."""
    keys, accidentals = sort_chord(note)
    return RenderableNote(
        keys=keys,
        duration=note.duration,
        clef=clef,
        accidentals=accidentals,
        annotation=note.dynamic.upper() if note.dynamic else None,
        articulation_code=ARTICULATION_CODES.get(note.articulation or ""),
    )


def find_beam_groups(measure_notes: Sequence[Note]) -> list[list[int]]:
    """
    Positions (within the measure) of notes joined by a beam.

    Consecutive eighths and sixteenths that start inside the same beat form a
    group; single flagged notes keep their flag and form no group.
    """
    groups: list[list[int]] = []
    current: list[int] = []
    current_beat: int | None = None
    onset = 0.0

    for position, note in enumerate(measure_notes):
        beat = math.floor(onset + 1e-9)
        if note.duration in BEAMABLE_DURATIONS and (not current or beat == current_beat):
            current.append(position)
            current_beat = beat
        else:
            if len(current) > 1:
                groups.append(current)
            current = [position] if note.duration in BEAMABLE_DURATIONS else []
            current_beat = beat
        onset += DURATION_BEATS.get(note.duration, 1.0)

    if len(current) > 1:
        groups.append(current)
    return groups


def find_slurs(measure_notes: Sequence[Note]) -> list[tuple[int, int]]:
    """(start, stop) positions of slurs that open and close inside the measure."""
    slurs: list[tuple[int, int]] = []
    start: int | None = None
    for position, note in enumerate(measure_notes):
        if note.slur == "start":
            start = position
        elif note.slur == "stop" and start is not None:
            slurs.append((start, position))
            start = None
    return slurs


# ----------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------


class MeasureLayoutEngine:
    """
    Lay a :class:`MusicData` out as aligned rows of measures.

    Every part is segmented independently; the number of columns is the
    largest measure count of any part and each column takes the width of its
    densest part, so the staves of one column line up vertically. Measure
    metadata is recorded for the first part only and serves as the common
    timeline for jumping playback.

    Note placement is delegated to a :class:`StaveFormatter`. When formatting a
    measure fails the error is logged, the measure is listed in
    ``LayoutResult.layout_errors`` and its notes keep the stave's start x.
    """

    def __init__(self, formatter: StaveFormatter | None = None) -> None:
        self.formatter = formatter or ProportionalFormatter()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _format(
        self,
        stave: StavePlacement,
        infos: list[NoteRenderInfo],
        beats_per_measure: int,
        result: LayoutResult,
    ) -> None:
        try:
            positions = self.formatter.format_measure(stave, beats_per_measure)
            if len(positions) != len(infos):
                raise LayoutError(
                    f"Formatter placed {len(positions)} of {len(infos)} notes."
                )
        except Exception:
            logger.exception(
                "Error formatting measure %d of part %d; keeping approximate positions",
                stave.measure_index + 1,
                stave.part_index + 1,
            )
            result.layout_errors.append((stave.part_index, stave.measure_index))
            return

        for info, x in zip(infos, positions):
            info.x = x

    def _spans(
        self,
        measure_notes: Sequence[Note],
        infos: list[NoteRenderInfo],
        part_index: int,
        measure_index: int,
        result: LayoutResult,
    ) -> None:
        for group in find_beam_groups(measure_notes):
            result.beams.append(
                GlyphSpan(
                    kind="beam",
                    x_start=infos[group[0]].x,
                    x_end=infos[group[-1]].x,
                    part_index=part_index,
                    measure_index=measure_index,
                    note_indices=tuple(infos[p].note_index for p in group),
                )
            )
        for start, stop in find_slurs(measure_notes):
            result.slurs.append(
                GlyphSpan(
                    kind="slur",
                    x_start=infos[start].x,
                    x_end=infos[stop].x,
                    part_index=part_index,
                    measure_index=measure_index,
                    note_indices=tuple(infos[p].note_index for p in range(start, stop + 1)),
                )
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def layout(self, music_data: MusicData) -> LayoutResult:
        """Segment, size and place every part of ``music_data``."""
        beats_per_measure = music_data.beats_per_measure or 4
        part_measures = [segment_measures(part.notes, beats_per_measure) for part in music_data.parts]
        widths = column_widths(part_measures)
        column_x = [STAVE_X_START + offset for offset in accumulate_widths(widths)]

        result = LayoutResult(
            total_width=CANVAS_MARGIN + sum(widths),
            height=len(music_data.parts) * STAVE_SPACING + CANVAS_MARGIN,
        )

        for part_index, (part, measures) in enumerate(zip(music_data.parts, part_measures)):
            y = STAVE_Y_START + part_index * STAVE_SPACING

            for measure_index, measure_notes in enumerate(measures):
                x = column_x[measure_index]
                width = widths[measure_index]
                first = measure_index == 0

                stave = StavePlacement(
                    part_index=part_index,
                    measure_index=measure_index,
                    x=x,
                    y=y,
                    width=width,
                    clef=part.clef,
                    key_signature=music_data.key_signature if first else None,
                    time_signature=music_data.time_signature if first else None,
                    directions=tuple(d for d in part.directions if d.measure_index == 0) if first else (),
                    notes=tuple(to_renderable(note, part.clef) for note in measure_notes),
                )
                result.staves.append(stave)

                if part_index == 0:
                    result.measures.append(
                        MeasureMeta(index=measure_index, x_start=x, x_end=x + width, width=width)
                    )

                infos = [
                    NoteRenderInfo(
                        note=note,
                        time=note.time,
                        x=x,
                        part_index=part_index,
                        measure_index=measure_index,
                        note_index=len(result.notes) + position,
                        y=y,
                    )
                    for position, note in enumerate(measure_notes)
                ]
                result.notes.extend(infos)

                if infos:
                    self._format(stave, infos, beats_per_measure, result)
                    self._spans(measure_notes, infos, part_index, measure_index, result)

        if len(part_measures) == 2:
            shared = min(len(part_measures[0]), len(part_measures[1]))
            for measure_index in range(shared):
                if measure_index == 0:
                    result.connectors.append(StaveConnector("brace", measure_index))
                result.connectors.append(StaveConnector("single_left", measure_index))
                result.connectors.append(StaveConnector("single_right", measure_index))

        logger.info(
            "Laid out %d part(s) in %d measure column(s), %d note(s), width %d px",
            len(music_data.parts),
            len(widths),
            len(result.notes),
            result.total_width,
        )
        return result


def layout(music_data: MusicData, formatter: StaveFormatter | None = None) -> LayoutResult:
    """Lay out ``music_data`` with a fresh :class:`MeasureLayoutEngine`."""
    return MeasureLayoutEngine(formatter).layout(music_data)
