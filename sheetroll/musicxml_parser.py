"""MusicXmlParser: reads a MusicXML document into a MusicData value."""

from __future__ import annotations

import logging
import re
import zipfile
from dataclasses import replace
from pathlib import Path
from typing import Final
from xml.etree import ElementTree as ET

from sheetroll.errors import ScoreParseError
from sheetroll.score_models import ChordAccidental, Direction, MusicData, Note, Part

logger = logging.getLogger(__name__)

#: Circle of fifths: ``<fifths>`` value -> canonical key name.
KEY_SIGNATURES: Final[dict[int, str]] = {
    -7: "Cb",
    -6: "Gb",
    -5: "Db",
    -4: "Ab",
    -3: "Eb",
    -2: "Bb",
    -1: "F",
    0: "C",
    1: "G",
    2: "D",
    3: "A",
    4: "E",
    5: "B",
    6: "F#",
    7: "C#",
}

DEFAULT_DIVISIONS: Final[int] = 4
DEFAULT_BEATS: Final[int] = 4
DEFAULT_BEAT_TYPE: Final[int] = 4
DEFAULT_TITLE: Final[str] = "Untitled Piece"
DEFAULT_COMPOSER: Final[str] = "Unknown composer"

SLUR_TYPES: Final[set[str]] = {"start", "stop", "continue"}
PLACEMENTS: Final[set[str]] = {"above", "below"}
STEPS: Final[str] = "ABCDEFG"

# Lower bound of each duration symbol, longest first.
_DURATION_THRESHOLDS: Final[list[tuple[float, str]]] = [
    (4.0, "w"),
    (2.0, "h"),
    (1.0, "q"),
    (0.5, "8"),
]

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ----------------------------------------------------------------------
# Pure mapping helpers
# ----------------------------------------------------------------------


def key_signature_for_fifths(fifths: int) -> str:
    """Map a ``<fifths>`` value to its key name; unknown values map to ``"C"``."""
    return KEY_SIGNATURES.get(fifths, "C")


def quantize_duration(beats: float) -> str:
    """
    Map a length in beats to the nearest duration symbol at or below it.

    Boundary values take the longer symbol (exactly 2 beats is ``h``).
    Anything shorter than an eighth becomes ``16``.
    """
    for threshold, symbol in _DURATION_THRESHOLDS:
        if beats >= threshold:
            return symbol
    return "16"


def resolve_clef(sign: str | None, line: str | None) -> str:
    """Map a clef ``<sign>``/``<line>`` pair to ``treble``, ``bass``, ``alto`` or ``tenor``."""
    sign = (sign or "G").strip().upper()
    line = (line or "2").strip()
    if sign == "G" and line == "2":
        return "treble"
    if sign == "F" and line == "4":
        return "bass"
    if sign == "C":
        return "alto" if line == "3" else "tenor"
    if sign == "F":
        return "bass"
    return "treble"


def pitch_to_key(step: str, octave: str, alter: str | None = None) -> tuple[str, str | None]:
    """
    Build a ``"step[accidental]/octave"`` key string.

    Only single sharps and flats are modelled; any other ``<alter>`` value is
    written as a natural.

    Returns:
        ``(key, accidental)`` where accidental is ``"#"``, ``"b"`` or ``None``.
    """
    accidental: str | None = None
    if alter is not None:
        try:
            value = float(alter)
        except ValueError:
            value = 0.0
        if value == 1:
            accidental = "#"
        elif value == -1:
            accidental = "b"
    return f"{step.lower()}{accidental or ''}/{octave}", accidental


def _leading_int(text: str | None) -> int | None:
    if text is None:
        return None
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else None


def _text(elem: ET.Element | None) -> str | None:
    if elem is None or elem.text is None:
        return None
    text = elem.text.strip()
    return text or None


def _strip_namespaces(root: ET.Element) -> None:
    for elem in root.iter():
        if isinstance(elem.tag, str) and "}" in elem.tag:
            elem.tag = elem.tag.split("}", 1)[1]


def _staff_sort_key(staff: str) -> tuple[int, str]:
    return (int(staff), staff) if staff.isdigit() else (1 << 30, staff)


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------


class MusicXmlParser:
    """
    Convert a partwise MusicXML document into a :class:`MusicData`.

    Document-level problems (not XML, wrong root element) raise
    :class:`ScoreParseError`. Problems inside single elements never abort the
    parse: the element falls back to a default and a warning is recorded in
    ``MusicData.warnings``.

    Multi-staff parts
    -----------------
    A piano ``<part>`` interleaves both staves of the grand staff in document
    order. When a part's ``<clef>`` elements reference more than one staff
    number, the part is scanned once per staff (ascending) and notes and
    directions are filtered by their ``<staff>`` element (default ``"1"``).
    Each staff becomes its own :class:`Part`.
    """

    def __init__(self) -> None:
        self._warnings: list[str] = []

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._warnings.append(message)

    def _parse_root(self, xml_text: str | bytes) -> ET.Element:
        if isinstance(xml_text, str):
            xml_text = xml_text.lstrip("\ufeff")
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as exc:
            raise ScoreParseError(f"Not a well-formed XML document: {exc}") from exc

        _strip_namespaces(root)
        if root.tag == "score-timewise":
            raise ScoreParseError("score-timewise MusicXML is not supported; export as partwise.")
        if root.tag != "score-partwise":
            raise ScoreParseError(f"Root element <{root.tag}> is not a MusicXML score.")
        return root

    def _read_int(self, text: str | None, default: int, label: str) -> int:
        if text is None:
            return default
        value = _leading_int(text)
        if value is None:
            self._warn(f"Unreadable {label} '{text}', using {default}.")
            return default
        return value

    def _read_title(self, root: ET.Element) -> str:
        return (
            _text(root.find(".//work/work-title"))
            or _text(root.find(".//movement-title"))
            or DEFAULT_TITLE
        )

    def _read_composer(self, root: ET.Element) -> str:
        creators = root.findall(".//identification/creator")
        composer = next(
            (c for c in creators if (c.get("type") or "").lower() == "composer"),
            creators[0] if creators else None,
        )
        return _text(composer) or DEFAULT_COMPOSER

    def _read_key(self, root: ET.Element) -> str:
        fifths = self._read_int(_text(root.find(".//key/fifths")), 0, "key fifths")
        if fifths not in KEY_SIGNATURES:
            self._warn(f"Key with {fifths} fifths is out of range, using C.")
        return key_signature_for_fifths(fifths)

    def _read_time(self, root: ET.Element) -> tuple[int, int]:
        beats = self._read_int(_text(root.find(".//time/beats")), DEFAULT_BEATS, "time beats")
        beat_type = self._read_int(
            _text(root.find(".//time/beat-type")), DEFAULT_BEAT_TYPE, "time beat-type"
        )
        return (beats if beats > 0 else DEFAULT_BEATS), (beat_type if beat_type > 0 else DEFAULT_BEAT_TYPE)

    def _read_part_names(self, root: ET.Element) -> dict[str, str]:
        names: dict[str, str] = {}
        for score_part in root.iter("score-part"):
            part_id = score_part.get("id")
            name = _text(score_part.find("part-name"))
            if part_id and name:
                names[part_id] = name
        return names

    def _read_divisions(self, part_el: ET.Element, part_id: str) -> int:
        divisions = self._read_int(
            _text(part_el.find(".//divisions")), DEFAULT_DIVISIONS, f"divisions in part {part_id}"
        )
        if divisions <= 0:
            self._warn(f"Divisions {divisions} in part {part_id} is not positive, using {DEFAULT_DIVISIONS}.")
            return DEFAULT_DIVISIONS
        return divisions

    def _read_notations(self, note_el: ET.Element) -> tuple[str | None, str | None, str | None]:
        dynamic = articulation = slur = None

        dynamics = note_el.find(".//notations/dynamics")
        if dynamics is not None and len(dynamics):
            dynamic = dynamics[0].tag.lower()

        articulations = note_el.find(".//notations/articulations")
        if articulations is not None and len(articulations):
            articulation = articulations[0].tag.lower()

        slur_el = note_el.find(".//notations/slur")
        if slur_el is not None and slur_el.get("type") in SLUR_TYPES:
            slur = slur_el.get("type")

        return dynamic, articulation, slur

    def _read_directions(
        self, measure: ET.Element, staff: str, measure_index: int, cursor: float
    ) -> list[Direction]:
        directions: list[Direction] = []
        for direction in measure.iter("direction"):
            if (_text(direction.find("staff")) or "1") != staff:
                continue
            text = _text(direction.find(".//direction-type/words"))
            if not text:
                continue
            placement = direction.get("placement") or "above"
            if placement not in PLACEMENTS:
                placement = "above"
            directions.append(
                Direction(measure_index=measure_index, text=text, placement=placement, time=cursor)
            )
        return directions

    def _parse_staff(
        self,
        part_el: ET.Element,
        staff: str,
        clef: str,
        divisions: int,
        part_id: str,
        name: str,
    ) -> Part:
        notes: list[Note] = []
        directions: list[Direction] = []
        cursor = 0.0

        for measure_index, measure in enumerate(part_el.findall("measure")):
            directions.extend(self._read_directions(measure, staff, measure_index, cursor))

            for note_el in measure.iter("note"):
                if (_text(note_el.find("staff")) or "1") != staff:
                    continue
                if note_el.find("grace") is not None:
                    continue

                is_chord = note_el.find("chord") is not None
                ticks = self._read_int(_text(note_el.find("duration")), divisions, "note duration")
                beats = (ticks if ticks > 0 else divisions) / divisions

                if note_el.find("rest") is not None:
                    if not is_chord:
                        cursor += beats
                    continue

                pitch = note_el.find("pitch")
                step = _text(pitch.find("step")) if pitch is not None else None
                octave = _text(pitch.find("octave")) if pitch is not None else None
                if not step or step.upper() not in STEPS or not octave or not octave.isdigit():
                    if pitch is not None:
                        self._warn(
                            f"Unreadable pitch in part {part_id} measure {measure_index + 1}, skipped."
                        )
                    if not is_chord:
                        cursor += beats
                    continue

                key, accidental = pitch_to_key(step, octave, _text(pitch.find("alter")))

                if is_chord and notes:
                    prev = notes[-1]
                    chord_accidentals = prev.accidentals
                    if accidental:
                        chord_accidentals += (ChordAccidental(len(prev.keys), accidental),)
                    notes[-1] = replace(
                        prev, keys=prev.keys + (key,), accidentals=chord_accidentals
                    )
                    continue

                dynamic, articulation, slur = self._read_notations(note_el)
                notes.append(
                    Note(
                        keys=(key,),
                        duration=quantize_duration(beats),
                        time=cursor,
                        accidental=accidental,
                        dynamic=dynamic,
                        articulation=articulation,
                        slur=slur,
                    )
                )
                cursor += beats

        logger.debug(
            "Parsed %d note(s) and %d direction(s) from '%s' (%s clef)",
            len(notes),
            len(directions),
            name,
            clef,
        )
        return Part(
            id=f"{part_id}_{staff}",
            name=name,
            clef=clef,
            notes=tuple(notes),
            directions=tuple(directions),
        )

    def _parse_part(
        self, part_el: ET.Element, part_index: int, part_names: dict[str, str]
    ) -> list[Part]:
        part_id = part_el.get("id") or f"P{part_index + 1}"
        part_name = part_names.get(part_id, f"Part {part_index + 1}")
        divisions = self._read_divisions(part_el, part_id)

        clefs = list(part_el.iter("clef"))
        staves = {clef_el.get("number") or "1" for clef_el in clefs}

        if len(staves) <= 1:
            clef_el = clefs[0] if clefs else None
            clef = resolve_clef(
                _text(clef_el.find("sign")) if clef_el is not None else None,
                _text(clef_el.find("line")) if clef_el is not None else None,
            )
            return [self._parse_staff(part_el, "1", clef, divisions, part_id, part_name)]

        parts: list[Part] = []
        for staff in sorted(staves, key=_staff_sort_key):
            clef_el = next((c for c in clefs if (c.get("number") or "1") == staff), clefs[0])
            clef = resolve_clef(_text(clef_el.find("sign")), _text(clef_el.find("line")))
            parts.append(
                self._parse_staff(
                    part_el, staff, clef, divisions, part_id, f"{part_name} Staff {staff}"
                )
            )
        return parts

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(self, xml_text: str | bytes) -> MusicData:
        """
        Parse MusicXML text into a :class:`MusicData`.

        Raises:
            ScoreParseError: If the text is not a partwise MusicXML document.
        """
        self._warnings = []
        root = self._parse_root(xml_text)

        beats, beat_type = self._read_time(root)
        part_names = self._read_part_names(root)

        parts: list[Part] = []
        for part_index, part_el in enumerate(root.findall("part")):
            parts.extend(self._parse_part(part_el, part_index, part_names))

        if not parts:
            self._warn("The score contains no parts.")

        music_data = MusicData(
            key_signature=self._read_key(root),
            time_signature=f"{beats}/{beat_type}",
            beats_per_measure=beats,
            beat_unit=beat_type,
            work_title=self._read_title(root),
            composer=self._read_composer(root),
            parts=tuple(parts),
            warnings=tuple(self._warnings),
        )
        logger.info(
            "Parsed '%s': %d stave(s), %d note(s), key %s, time %s",
            music_data.work_title,
            len(music_data.parts),
            music_data.total_notes,
            music_data.key_signature,
            music_data.time_signature,
        )
        return music_data


# ----------------------------------------------------------------------
# Module-level entry points
# ----------------------------------------------------------------------


def parse_musicxml(xml_text: str | bytes) -> MusicData:
    """Parse MusicXML text with a fresh :class:`MusicXmlParser`."""
    return MusicXmlParser().parse(xml_text)


def _read_mxl(path: Path) -> bytes:
    """Return the root score document of a compressed ``.mxl`` archive."""
    try:
        with zipfile.ZipFile(path) as archive:
            names = archive.namelist()
            root_name: str | None = None
            if "META-INF/container.xml" in names:
                container = ET.fromstring(archive.read("META-INF/container.xml"))
                rootfile = container.find(".//{*}rootfile")
                if rootfile is not None:
                    root_name = rootfile.get("full-path")
            if root_name is None:
                root_name = next(
                    (
                        name
                        for name in names
                        if not name.startswith("META-INF/")
                        and name.lower().endswith((".xml", ".musicxml"))
                    ),
                    None,
                )
            if root_name is None:
                raise ScoreParseError(f"No score document found in '{path.name}'.")
            return archive.read(root_name)
    except (zipfile.BadZipFile, KeyError, ET.ParseError) as exc:
        raise ScoreParseError(f"Could not read compressed MusicXML '{path.name}': {exc}") from exc


def load_musicxml(path: str | Path) -> MusicData:
    """
    Read and parse a ``.musicxml``/``.xml`` file or a compressed ``.mxl`` archive.

    Raises:
        OSError: If the file cannot be read.
        ScoreParseError: If the content is not a partwise MusicXML score.
    """
    path = Path(path)
    if path.suffix.lower() == ".mxl":
        return parse_musicxml(_read_mxl(path))
    return parse_musicxml(path.read_bytes())
