"""Unit tests for ScoreSession wiring and status reporting."""

from pathlib import Path

from sheetroll.audio import RecordingSynth
from sheetroll.config import PlaybackSettings
from sheetroll.notation_renderers import VexflowHtmlRenderer
from sheetroll.playback import HighlightListener, PlaybackState, ScrollMode
from sheetroll.scheduler import ManualScheduler
from sheetroll.session import ScoreSession, is_valid_color
from sheetroll.stave_formatter import ProportionalFormatter

PIANO_XML = """<?xml version="1.0" encoding="UTF-8"?>
<score-partwise version="3.1">
  <work><work-title>Little Piece</work-title></work>
  <identification><creator type="composer">A. Student</creator></identification>
  <part-list><score-part id="P1"><part-name>Piano</part-name></score-part></part-list>
  <part id="P1">
    <measure number="1">
      <attributes>
        <divisions>1</divisions>
        <staves>2</staves>
        <clef number="1"><sign>G</sign><line>2</line></clef>
        <clef number="2"><sign>F</sign><line>4</line></clef>
      </attributes>
      <note><pitch><step>C</step><octave>4</octave></pitch><duration>1</duration><staff>1</staff></note>
      <note><pitch><step>C</step><octave>2</octave></pitch><duration>1</duration><staff>2</staff></note>
    </measure>
  </part>
</score-partwise>
"""


def _session(**kwargs) -> tuple[ScoreSession, list[tuple[str, str]]]:
    statuses: list[tuple[str, str]] = []
    kwargs.setdefault("settings", PlaybackSettings(grace_delay=0.1))
    session = ScoreSession(
        scheduler=ManualScheduler(),
        status_callback=lambda level, message: statuses.append((level, message)),
        **kwargs,
    )
    return session, statuses


def _run(session: ScoreSession, frames: int = 600) -> None:
    assert isinstance(session.scheduler, ManualScheduler)
    for _ in range(frames):
        if session.scheduler.idle:
            break
        session.scheduler.step()


def test_defaults_before_loading() -> None:
    session, _ = _session()
    assert session.work_title == "Untitled Piece"
    assert session.composer == "Unknown composer"
    assert session.counter_text == "0 / 0"
    assert session.state is PlaybackState.STOPPED


def test_start_without_score_reports_warning() -> None:
    session, statuses = _session()
    assert session.start() is False
    assert statuses[-1][0] == "warning"


def test_load_text_builds_layout_and_engine() -> None:
    session, statuses = _session()
    assert session.load_text(PIANO_XML) is True
    assert session.work_title == "Little Piece"
    assert session.composer == "A. Student"
    assert session.counter_text == "0 / 2"
    assert session.layout_result is not None
    assert [c.kind for c in session.layout_result.connectors] == ["brace", "single_left", "single_right"]
    assert statuses[-1][0] == "success"


def test_piano_scenario_triggers_both_staves() -> None:
    synth = RecordingSynth()
    session, _ = _session(synth=synth, settings=PlaybackSettings(sound_enabled=True, grace_delay=0.1))
    session.load_text(PIANO_XML)
    assert session.music_data is not None
    assert [p.notes[0].keys for p in session.music_data.parts] == [("c/4",), ("c/2",)]

    assert session.start() is True
    _run(session)
    assert session.state is PlaybackState.FINISHED
    assert sorted(synth.events) == [(("C2",), "4n"), (("C4",), "4n")]
    assert session.counter_text == "2 / 2"


def test_failed_load_keeps_previous_score() -> None:
    session, statuses = _session()
    session.load_text(PIANO_XML)
    engine = session.engine

    assert session.load_text("<not-a-score/>") is False
    assert statuses[-1][0] == "error"
    assert session.engine is engine
    assert session.work_title == "Little Piece"


def test_load_missing_file_reports_error(tmp_path: Path) -> None:
    session, statuses = _session()
    assert session.load_file(tmp_path / "nope.musicxml") is False
    assert statuses[-1][0] == "error"
    assert session.engine is None


def test_load_file(tmp_path: Path) -> None:
    path = tmp_path / "piece.musicxml"
    path.write_text(PIANO_XML, encoding="utf-8")
    session, _ = _session()
    assert session.load_file(path) is True
    assert session.music_data is not None
    assert session.music_data.total_notes == 2


def test_loading_new_score_resets_running_playback() -> None:
    session, _ = _session()
    session.load_text(PIANO_XML)
    old_engine = session.engine
    session.start()
    session.scheduler.step()

    session.load_text(PIANO_XML)
    assert old_engine is not None
    assert old_engine.state is PlaybackState.STOPPED
    assert session.state is PlaybackState.STOPPED


def test_set_tempo_validates_range() -> None:
    session, statuses = _session(settings=PlaybackSettings(min_bpm=30, max_bpm=240))
    assert session.set_tempo(500) is False
    assert statuses[-1][0] == "error"
    assert session.set_tempo(80) is True
    session.load_text(PIANO_XML)
    assert session.engine is not None
    assert session.engine.bpm == 80


def test_set_tempo_rejected_after_finish() -> None:
    session, statuses = _session()
    session.load_text(PIANO_XML)
    session.start()
    _run(session)
    assert session.set_tempo(90) is False
    assert statuses[-1][0] == "error"
    session.reset()
    assert session.set_tempo(90) is True


def test_set_scroll_mode() -> None:
    session, statuses = _session()
    session.load_text(PIANO_XML)
    assert session.set_scroll_mode("center") is True
    assert session.scroll_mode is ScrollMode.CENTER
    assert session.engine is not None
    assert session.engine.guide_x == 500
    assert session.set_scroll_mode("sideways") is False
    assert statuses[-1][0] == "error"


def test_highlight_color_validation() -> None:
    session, statuses = _session()
    assert session.highlight_color == "#2ecc71"
    assert session.set_highlight_color("rgb(255, 0, 0)") is True
    assert session.highlight_color == "rgb(255, 0, 0)"
    assert session.set_highlight_color("not a colour") is False
    assert session.highlight_color == "rgb(255, 0, 0)"
    assert statuses[-1][0] == "error"


def test_is_valid_color() -> None:
    assert is_valid_color("#fff")
    assert is_valid_color("#2ecc71")
    assert is_valid_color("hsl(120, 50%, 50%)")
    assert is_valid_color("red")
    assert is_valid_color("MediumSeaGreen")
    assert not is_valid_color("#12345")
    assert not is_valid_color("green; background: red")
    assert not is_valid_color("greenish")


def test_sound_requires_a_synth() -> None:
    session, statuses = _session()
    assert session.set_sound_enabled(True) is False
    assert session.sound_enabled is False
    assert statuses[-1] == ("error", "No synthesizer is available; sound stays off.")


def test_sound_toggle_reaches_engine() -> None:
    session, _ = _session(synth=RecordingSynth())
    session.load_text(PIANO_XML)
    assert session.set_sound_enabled(True) is True
    assert session.engine is not None
    assert session.engine.sound_enabled is True


class _ColorListener(HighlightListener):
    def __init__(self) -> None:
        self.colors: list[str] = []

    def on_color_change(self, color: str) -> None:
        self.colors.append(color)


class _SwitchableFormatter(ProportionalFormatter):
    def __init__(self) -> None:
        self.ready = True

    def is_ready(self) -> bool:
        return self.ready


def test_named_highlight_color_reaches_listener() -> None:
    listener = _ColorListener()
    session, _ = _session(highlight_listener=listener)
    assert listener.colors == ["#2ecc71"]
    assert session.set_highlight_color("mediumseagreen") is True
    assert session.highlight_color == "mediumseagreen"
    assert listener.colors == ["#2ecc71", "mediumseagreen"]


def test_render_uses_session_highlight_color() -> None:
    session, statuses = _session()
    assert session.render(VexflowHtmlRenderer()) is None
    assert statuses[-1][0] == "warning"

    session.load_text(PIANO_XML)
    session.set_highlight_color("tomato")
    page = session.render(VexflowHtmlRenderer())
    assert page is not None
    assert '"highlight_color":"tomato"' in page
    assert "<title>Little Piece</title>" in page


def test_unready_formatter_stops_loading_and_keeps_previous_score() -> None:
    formatter = _SwitchableFormatter()
    session, statuses = _session(formatter=formatter)
    assert session.load_text(PIANO_XML) is True
    engine = session.engine

    formatter.ready = False
    assert session.load_text(PIANO_XML.replace("Little Piece", "Other Piece")) is False
    assert statuses[-1] == ("error", "The notation formatter is not ready; try loading again.")
    assert session.work_title == "Little Piece"
    assert session.engine is engine
