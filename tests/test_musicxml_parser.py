"""Unit tests for MusicXmlParser and its mapping helpers."""

import io
import zipfile
from pathlib import Path

import pytest

from sheetroll.errors import ScoreParseError
from sheetroll.musicxml_parser import (
    DEFAULT_COMPOSER,
    DEFAULT_TITLE,
    KEY_SIGNATURES,
    key_signature_for_fifths,
    load_musicxml,
    parse_musicxml,
    pitch_to_key,
    quantize_duration,
    resolve_clef,
)
from sheetroll.score_models import CLEFS, ChordAccidental


def _note(
    step: str = "C",
    octave: int = 4,
    duration: int = 4,
    alter: int | None = None,
    staff: int | None = None,
    chord: bool = False,
    extra: str = "",
) -> str:
    alter_xml = f"<alter>{alter}</alter>" if alter is not None else ""
    staff_xml = f"<staff>{staff}</staff>" if staff is not None else ""
    chord_xml = "<chord/>" if chord else ""
    return (
        f"<note>{chord_xml}<pitch><step>{step}</step>{alter_xml}<octave>{octave}</octave></pitch>"
        f"<duration>{duration}</duration>{staff_xml}{extra}</note>"
    )


def _rest(duration: int = 4, staff: int | None = None) -> str:
    staff_xml = f"<staff>{staff}</staff>" if staff is not None else ""
    return f"<note><rest/><duration>{duration}</duration>{staff_xml}</note>"


def _score_xml(
    measures: list[str],
    attributes: str = "<divisions>4</divisions><clef><sign>G</sign><line>2</line></clef>",
    header: str = "",
) -> str:
    body = "".join(
        f'<measure number="{i + 1}">{f"<attributes>{attributes}</attributes>" if i == 0 else ""}{m}</measure>'
        for i, m in enumerate(measures)
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<score-partwise>{header}"
        '<part-list><score-part id="P1"><part-name>Flute</part-name></score-part></part-list>'
        f'<part id="P1">{body}</part></score-partwise>'
    )


# ----------------------------------------------------------------------
# Mapping helpers
# ----------------------------------------------------------------------


def test_key_signature_table_covers_circle_of_fifths() -> None:
    assert len(KEY_SIGNATURES) == 15
    assert key_signature_for_fifths(-7) == "Cb"
    assert key_signature_for_fifths(-3) == "Eb"
    assert key_signature_for_fifths(0) == "C"
    assert key_signature_for_fifths(2) == "D"
    assert key_signature_for_fifths(7) == "C#"


def test_key_signature_out_of_range_is_c() -> None:
    assert key_signature_for_fifths(8) == "C"
    assert key_signature_for_fifths(-9) == "C"


@pytest.mark.parametrize(
    ("beats", "symbol"),
    [
        (6.0, "w"),
        (4.0, "w"),
        (3.99, "h"),
        (2.0, "h"),
        (1.5, "q"),
        (1.0, "q"),
        (0.5, "8"),
        (0.49, "16"),
        (0.25, "16"),
        (0.1, "16"),
    ],
)
def test_quantize_duration_boundaries(beats: float, symbol: str) -> None:
    assert quantize_duration(beats) == symbol


@pytest.mark.parametrize(
    ("sign", "line", "clef"),
    [
        ("G", "2", "treble"),
        ("F", "4", "bass"),
        ("F", "3", "bass"),
        ("C", "3", "alto"),
        ("C", "4", "tenor"),
        ("percussion", None, "treble"),
        (None, None, "treble"),
    ],
)
def test_resolve_clef(sign: str | None, line: str | None, clef: str) -> None:
    assert resolve_clef(sign, line) == clef
    assert clef in CLEFS


def test_pitch_to_key_sharp_flat_and_natural() -> None:
    assert pitch_to_key("C", "4", "1") == ("c#/4", "#")
    assert pitch_to_key("E", "3", "-1") == ("eb/3", "b")
    assert pitch_to_key("F", "5", "2") == ("f/5", None)
    assert pitch_to_key("G", "2") == ("g/2", None)


# ----------------------------------------------------------------------
# Header
# ----------------------------------------------------------------------


def test_header_fallbacks() -> None:
    data = parse_musicxml(_score_xml([_note()]))
    assert data.work_title == DEFAULT_TITLE
    assert data.composer == DEFAULT_COMPOSER
    assert data.key_signature == "C"
    assert data.time_signature == "4/4"
    assert data.beats_per_measure == 4
    assert data.beat_unit == 4


def test_header_reads_title_composer_key_and_time() -> None:
    header = (
        "<work><work-title>Minuet in G</work-title></work>"
        '<identification><creator type="lyricist">Anon</creator>'
        '<creator type="composer">Petzold</creator></identification>'
    )
    attributes = (
        "<divisions>2</divisions><key><fifths>1</fifths></key>"
        "<time><beats>3</beats><beat-type>4</beat-type></time>"
        "<clef><sign>G</sign><line>2</line></clef>"
    )
    data = parse_musicxml(_score_xml([_note(duration=2)], attributes=attributes, header=header))
    assert data.work_title == "Minuet in G"
    assert data.composer == "Petzold"
    assert data.key_signature == "G"
    assert data.time_signature == "3/4"
    assert data.beats_per_measure == 3


def test_movement_title_is_used_without_work_title() -> None:
    data = parse_musicxml(_score_xml([_note()], header="<movement-title>Etude</movement-title>"))
    assert data.work_title == "Etude"


def test_composite_time_signature_uses_leading_integer() -> None:
    attributes = "<divisions>4</divisions><time><beats>3+2</beats><beat-type>8</beat-type></time>"
    data = parse_musicxml(_score_xml([_note()], attributes=attributes))
    assert data.beats_per_measure == 3
    assert data.time_signature == "3/8"
    assert data.warnings == ()


def test_unreadable_divisions_fall_back_with_warning() -> None:
    data = parse_musicxml(_score_xml([_note(duration=4)], attributes="<divisions>many</divisions>"))
    assert data.parts[0].notes[0].duration == "q"
    assert any("divisions" in warning for warning in data.warnings)


# ----------------------------------------------------------------------
# Notes
# ----------------------------------------------------------------------


def test_single_quarter_note() -> None:
    data = parse_musicxml(_score_xml([_note("C", 4, 4)]))
    assert len(data.parts) == 1
    note = data.parts[0].notes[0]
    assert note.keys == ("c/4",)
    assert note.duration == "q"
    assert note.time == 0.0
    assert note.accidental is None


def test_times_are_running_sum_including_rests() -> None:
    data = parse_musicxml(_score_xml([_note(duration=4) + _rest(8) + _note(duration=2) + _note(duration=16)]))
    notes = data.parts[0].notes
    assert [n.time for n in notes] == [0.0, 3.0, 3.5]
    assert [n.duration for n in notes] == ["q", "8", "w"]


def test_chord_folds_into_previous_note_without_advancing_time() -> None:
    measure = (
        _note("C", 4, 4)
        + _note("E", 4, 4, alter=-1, chord=True)
        + _note("G", 4, 4, chord=True)
        + _note("D", 4, 4)
    )
    notes = parse_musicxml(_score_xml([measure])).parts[0].notes
    assert len(notes) == 2
    assert notes[0].keys == ("c/4", "eb/4", "g/4")
    assert notes[0].accidentals == (ChordAccidental(1, "b"),)
    assert notes[1].time == 1.0


def test_first_chord_tone_accidental_is_kept_on_note() -> None:
    notes = parse_musicxml(_score_xml([_note("F", 4, 4, alter=1)])).parts[0].notes
    assert notes[0].accidental == "#"
    assert notes[0].accidentals == ()


def test_chord_without_preceding_note_starts_a_new_note() -> None:
    notes = parse_musicxml(_score_xml([_note("A", 4, 4, chord=True)])).parts[0].notes
    assert len(notes) == 1
    assert notes[0].keys == ("a/4",)


def test_grace_notes_are_skipped_without_advancing() -> None:
    grace = "<note><grace/><pitch><step>B</step><octave>4</octave></pitch></note>"
    notes = parse_musicxml(_score_xml([grace + _note("C", 5, 4)])).parts[0].notes
    assert len(notes) == 1
    assert notes[0].time == 0.0


def test_unpitched_note_advances_time() -> None:
    unpitched = "<note><unpitched><display-step>E</display-step></unpitched><duration>4</duration></note>"
    notes = parse_musicxml(_score_xml([unpitched + _note("C", 5, 4)])).parts[0].notes
    assert len(notes) == 1
    assert notes[0].time == 1.0


def test_notations_sample_first_dynamic_articulation_and_slur() -> None:
    notations = (
        "<notations><dynamics><ff/><p/></dynamics>"
        "<articulations><staccato/><accent/></articulations>"
        '<slur type="start" number="1"/></notations>'
    )
    note = parse_musicxml(_score_xml([_note(extra=notations)])).parts[0].notes[0]
    assert note.dynamic == "ff"
    assert note.articulation == "staccato"
    assert note.slur == "start"


def test_directions_capture_words_with_placement_and_measure_time() -> None:
    direction = (
        '<direction placement="below"><direction-type><words>dolce</words></direction-type></direction>'
    )
    data = parse_musicxml(_score_xml([_note(duration=16), direction + _note(duration=16)]))
    (parsed,) = data.parts[0].directions
    assert parsed.text == "dolce"
    assert parsed.placement == "below"
    assert parsed.measure_index == 1
    assert parsed.time == 4.0


# ----------------------------------------------------------------------
# Parts and staves
# ----------------------------------------------------------------------


def test_piano_grand_staff_splits_into_two_parts() -> None:
    attributes = (
        "<divisions>1</divisions><staves>2</staves>"
        '<clef number="1"><sign>G</sign><line>2</line></clef>'
        '<clef number="2"><sign>F</sign><line>4</line></clef>'
    )
    measure = _note("C", 4, 1, staff=1) + _note("C", 2, 1, staff=2)
    xml = (
        "<score-partwise>"
        '<part-list><score-part id="P1"><part-name>Piano</part-name></score-part></part-list>'
        f'<part id="P1"><measure number="1"><attributes>{attributes}</attributes>{measure}</measure></part>'
        "</score-partwise>"
    )
    data = parse_musicxml(xml)
    assert [p.clef for p in data.parts] == ["treble", "bass"]
    assert [p.name for p in data.parts] == ["Piano Staff 1", "Piano Staff 2"]
    assert [p.id for p in data.parts] == ["P1_1", "P1_2"]
    assert data.parts[0].notes[0].keys == ("c/4",)
    assert data.parts[1].notes[0].keys == ("c/2",)


def test_part_without_name_gets_numbered_name() -> None:
    xml = '<score-partwise><part id="X"><measure>' + _note() + "</measure></part></score-partwise>"
    data = parse_musicxml(xml)
    assert data.parts[0].name == "Part 1"
    assert data.parts[0].clef == "treble"


def test_namespaced_document_is_accepted() -> None:
    xml = (
        '<score-partwise xmlns="http://www.musicxml.org/ns">'
        '<part id="P1"><measure>' + _note() + "</measure></part></score-partwise>"
    )
    assert parse_musicxml(xml).parts[0].notes[0].keys == ("c/4",)


# ----------------------------------------------------------------------
# Document-level failures and files
# ----------------------------------------------------------------------


def test_malformed_xml_raises_score_parse_error() -> None:
    with pytest.raises(ScoreParseError):
        parse_musicxml("<score-partwise><part>")


def test_wrong_root_raises_score_parse_error() -> None:
    with pytest.raises(ScoreParseError):
        parse_musicxml("<html><body/></html>")


def test_timewise_score_is_rejected() -> None:
    with pytest.raises(ScoreParseError, match="timewise"):
        parse_musicxml("<score-timewise/>")


def test_score_parse_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        parse_musicxml("not xml")


def test_empty_score_has_warning_and_no_parts() -> None:
    data = parse_musicxml("<score-partwise/>")
    assert data.parts == ()
    assert data.warnings


def test_load_musicxml_reads_plain_file(tmp_path: Path) -> None:
    path = tmp_path / "song.musicxml"
    path.write_text(_score_xml([_note("D", 5, 4)]), encoding="utf-8")
    assert load_musicxml(path).parts[0].notes[0].keys == ("d/5",)


def test_load_musicxml_reads_compressed_archive(tmp_path: Path) -> None:
    container = (
        '<container><rootfiles><rootfile full-path="score/song.xml"/></rootfiles></container>'
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("META-INF/container.xml", container)
        archive.writestr("score/song.xml", _score_xml([_note("A", 3, 4)]))
    path = tmp_path / "song.mxl"
    path.write_bytes(buffer.getvalue())

    assert load_musicxml(path).parts[0].notes[0].keys == ("a/3",)


def test_load_musicxml_rejects_broken_archive(tmp_path: Path) -> None:
    path = tmp_path / "broken.mxl"
    path.write_bytes(b"not a zip")
    with pytest.raises(ScoreParseError):
        load_musicxml(path)


def test_load_musicxml_missing_file_raises_os_error(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        load_musicxml(tmp_path / "missing.musicxml")
