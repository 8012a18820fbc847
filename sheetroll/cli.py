"""sheetroll CLI entry point."""

import logging
import sys
from dataclasses import replace
from pathlib import Path

import click

from sheetroll import __version__
from sheetroll.audio import MidiRecorder, NoteTrigger, RecordingSynth, Synth
from sheetroll.config import PlaybackSettings, load_config, settings_from_config
from sheetroll.errors import ScoreParseError
from sheetroll.measure_layout import layout as layout_score
from sheetroll.musicxml_parser import load_musicxml
from sheetroll.notation_renderers import SUPPORTED_FORMATS, build_renderer
from sheetroll.playback import PlaybackObserver, PlaybackState
from sheetroll.scheduler import FrameLoopScheduler, FrameScheduler, ManualScheduler
from sheetroll.score_models import MusicData
from sheetroll.session import ScoreSession

SCORE_PATH = click.Path(exists=True, dir_okay=False, readable=True)


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load_or_exit(score_file: str) -> MusicData:
    try:
        return load_musicxml(score_file)
    except (ScoreParseError, OSError) as exc:
        click.echo(f"  ERROR: Could not load score: {exc}", err=True)
        sys.exit(1)


def _echo_status(level: str, message: str) -> None:
    if level in ("error", "warning"):
        click.echo(f"  {level.upper()}: {message}", err=True)
    else:
        click.echo(f"  {message}")


class _EchoObserver(PlaybackObserver):
    """Prints triggers and state changes as playback runs."""

    def __init__(self, show_triggers: bool) -> None:
        self.show_triggers = show_triggers
        self.total = 0

    def on_progress(self, played: int, total: int) -> None:
        self.total = total

    def on_state_change(self, state: PlaybackState) -> None:
        click.echo(f"  [{state.value}]")

    def on_measure_change(self, measure_index: int) -> None:
        click.echo(f"  -- measure {measure_index + 1}")

    def on_trigger(self, trigger: NoteTrigger) -> None:
        if self.show_triggers:
            pitches = "+".join(trigger.pitches)
            click.echo(f"  {trigger.note_index + 1:>5}/{self.total:<5} {pitches:<18} {trigger.duration}")


# ── CLI group ──────────────────────────────────────────────────────────────────

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="sheetroll")
@click.option("-v", "--verbose", count=True, help="Log INFO with -v, DEBUG with -vv.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    metavar="PATH",
    help="Settings file merged over the packaged defaults.",
)
@click.pass_context
def main(ctx: click.Context, verbose: int, config_path: str | None) -> None:
    """sheetroll: MusicXML scroll-along sheet music player."""
    _configure_logging(verbose)
    ctx.obj = settings_from_config(load_config(config_path))


# ── inspect subcommand ─────────────────────────────────────────────────────────

@main.command()
@click.argument("score_file", type=SCORE_PATH)
def inspect(score_file: str) -> None:
    """
    Print the header, parts and parse warnings of a MusicXML score.

    SCORE_FILE is a .musicxml, .xml or compressed .mxl file.
    """
    music_data = _load_or_exit(score_file)

    click.echo(f"sheetroll v{__version__}")
    click.echo(f"  Title    : {music_data.work_title}")
    click.echo(f"  Composer : {music_data.composer}")
    click.echo(f"  Key      : {music_data.key_signature}  |  Time: {music_data.time_signature}")
    click.echo(f"  Parts    : {len(music_data.parts)}  |  Notes: {music_data.total_notes}")
    click.echo()
    for part in music_data.parts:
        click.echo(f"    {part.id:<12} {part.name:<28} {part.clef:<7} {len(part.notes):>5} note(s)")
        for direction in part.directions:
            click.echo(f"      m{direction.measure_index + 1} {direction.placement}: {direction.text}")

    if music_data.warnings:
        click.echo()
        click.echo(f"  {len(music_data.warnings)} warning(s):")
        for warning in music_data.warnings:
            click.echo(f"    - {warning}")


# ── layout subcommand ──────────────────────────────────────────────────────────

@main.command()
@click.argument("score_file", type=SCORE_PATH)
def layout(score_file: str) -> None:
    """
    Print the measure grid computed for a MusicXML score.

    SCORE_FILE is a .musicxml, .xml or compressed .mxl file.
    """
    music_data = _load_or_exit(score_file)
    result = layout_score(music_data)

    click.echo(f"sheetroll v{__version__}")
    click.echo(f"  {music_data.work_title}: {len(result.measures)} measure(s), {len(result.notes)} note(s)")
    click.echo(f"  Canvas : {result.total_width:.0f} x {result.height:.0f} px")
    click.echo()
    for measure in result.measures:
        click.echo(
            f"    m{measure.index + 1:<4} x {measure.x_start:>7.1f} .. {measure.x_end:>7.1f}"
            f"  (width {measure.width:.0f})"
        )
    click.echo(f"  Beams  : {len(result.beams)}  |  Slurs: {len(result.slurs)}")

    if result.layout_errors:
        click.echo()
        click.echo(f"  WARNING: {len(result.layout_errors)} measure(s) failed to format:", err=True)
        for part_index, measure_index in result.layout_errors:
            click.echo(f"    part {part_index + 1}, measure {measure_index + 1}", err=True)


# ── render subcommand ──────────────────────────────────────────────────────────

@main.command()
@click.argument("score_file", type=SCORE_PATH)
@click.option(
    "--output",
    "-o",
    default=None,
    metavar="PATH",
    help="Destination file path. Defaults to the score path with the format's extension.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(sorted(SUPPORTED_FORMATS), case_sensitive=False),
    default="html",
    show_default=True,
    help="Output format: HTML page or Markdown, both drawn by VexFlow.",
)
@click.option(
    "--highlight-color",
    default=None,
    metavar="COLOR",
    help="Highlight colour stored in the page (CSS name, hex, rgb() or hsl()). Defaults to the configured colour.",
)
@click.pass_obj
def render(
    settings: PlaybackSettings,
    score_file: str,
    output: str | None,
    output_format: str,
    highlight_color: str | None,
) -> None:
    """
    Render a MusicXML score as a VexFlow page.

    \b
    Examples:
      sheetroll render minuet.musicxml
      sheetroll render minuet.mxl -o minuet.html
      sheetroll render minuet.musicxml --format md-vexflow -o minuet.md
      sheetroll render minuet.musicxml --highlight-color tomato
    """
    renderer = build_renderer(output_format)
    resolved_output = output or str(Path(score_file).with_suffix(renderer.default_extension))
    session = ScoreSession(settings, ManualScheduler(), status_callback=_echo_status)
    if highlight_color is not None and not session.set_highlight_color(highlight_color):
        sys.exit(1)

    click.echo(f"sheetroll v{__version__}")
    click.echo("[1/2] Parsing and laying out MusicXML...")
    if not session.load_file(score_file):
        sys.exit(1)
    click.echo(f"[2/2] Writing '{resolved_output}'...")

    content = session.render(renderer)
    if content is None:
        sys.exit(1)
    try:
        Path(resolved_output).write_text(content, encoding="utf-8")
    except OSError as exc:
        click.echo(f"  ERROR: Could not write output file: {exc}", err=True)
        sys.exit(1)

    click.echo()
    click.echo(f"Done!  Open '{resolved_output}' in any browser.")


# ── play subcommand ────────────────────────────────────────────────────────────

@main.command()
@click.argument("score_file", type=SCORE_PATH)
@click.option("--tempo", type=int, default=None, help="Tempo in BPM. Defaults to the configured tempo.")
@click.option(
    "--mode",
    type=click.Choice(["smooth", "jumping", "center"], case_sensitive=False),
    default=None,
    help="Scroll mode. Defaults to the configured mode.",
)
@click.option("--viewport-width", type=click.IntRange(100, 10000), default=None, help="Viewport width in pixels.")
@click.option(
    "--sound/--no-sound",
    default=None,
    help="Send note triggers to the synthesizer and print each one. Defaults to the configured setting.",
)
@click.option(
    "--midi-out",
    default=None,
    metavar="PATH",
    help="Record the triggered notes to a MIDI file.",
)
@click.option(
    "--realtime/--offline",
    default=False,
    show_default=True,
    help="Run at wall-clock speed, or simulate the frames as fast as possible.",
)
@click.pass_obj
def play(
    settings: PlaybackSettings,
    score_file: str,
    tempo: int | None,
    mode: str | None,
    viewport_width: int | None,
    sound: bool | None,
    midi_out: str | None,
    realtime: bool,
) -> None:
    """
    Scroll a MusicXML score past the guide line and fire its note triggers.

    \b
    Examples:
      sheetroll play minuet.musicxml --sound
      sheetroll play minuet.musicxml --tempo 80 --mode jumping --midi-out minuet.mid
    """
    sound_enabled = settings.sound_enabled if sound is None else sound
    settings = replace(
        settings,
        scroll_mode=mode.lower() if mode else settings.scroll_mode,
        viewport_width=viewport_width or settings.viewport_width,
        sound_enabled=sound_enabled or midi_out is not None,
    )

    scheduler: FrameScheduler
    if realtime:
        scheduler = FrameLoopScheduler(fps=settings.fps)
    else:
        scheduler = ManualScheduler(frame_interval=1 / max(1, settings.fps))

    recorder = MidiRecorder(clock=scheduler.now) if midi_out is not None else None
    synth: Synth = recorder or RecordingSynth()
    observer = _EchoObserver(show_triggers=sound_enabled)
    session = ScoreSession(
        settings,
        scheduler,
        synth=synth,
        observer=observer,
        status_callback=_echo_status,
    )

    click.echo(f"sheetroll v{__version__}")
    if not session.load_file(score_file):
        sys.exit(1)
    if tempo is not None and not session.set_tempo(tempo):
        sys.exit(1)
    music_data = session.music_data
    if music_data is not None:
        observer.total = music_data.total_notes
        if recorder is not None:
            recorder.tempo = session.tempo
            recorder.time_signature = (music_data.beats_per_measure, music_data.beat_unit)

    click.echo(f"  Tempo : {session.tempo} BPM  |  Mode: {session.scroll_mode.value}")
    if not session.start():
        sys.exit(1)

    if isinstance(scheduler, ManualScheduler):
        while not scheduler.idle:
            scheduler.step()
    else:
        try:
            scheduler.run()
        except KeyboardInterrupt:
            session.toggle_pause()
            click.echo("  Interrupted.")

    click.echo(f"  Played {session.counter_text}")

    if recorder is not None and midi_out is not None:
        try:
            recorder.export(midi_out)
        except OSError as exc:
            click.echo(f"  ERROR: Could not write MIDI file: {exc}", err=True)
            sys.exit(1)
        click.echo(f"Done!  Recorded triggers written to '{midi_out}'.")
