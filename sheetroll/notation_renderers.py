"""Renderer implementations that draw a laid-out score with VexFlow."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Final

from sheetroll.score_models import LayoutResult, MusicData

DEFAULT_HIGHLIGHT_COLOR: Final[str] = "#2ecc71"
VEXFLOW_URL: Final[str] = "https://cdn.jsdelivr.net/npm/vexflow@4.2.3/build/esm/entry/vexflow.js"


def _escape_html(text: str) -> str:
    """Escape the three characters that are unsafe in HTML text content."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def build_payload(
    music_data: MusicData,
    layout_result: LayoutResult,
    highlight_color: str = DEFAULT_HIGHLIGHT_COLOR,
) -> dict[str, Any]:
    """
    Flatten a layout into the JSON document the VexFlow script draws from.

    Staves carry their notes in measure order; beams are left to VexFlow's own
    grouping, while slurs are given as (stave, from, to) note positions.
    ``highlight_color`` is stored for a playback script on the page.
    """
    first_note: dict[tuple[int, int], int] = {}
    for info in layout_result.notes:
        first_note.setdefault((info.part_index, info.measure_index), info.note_index)
    stave_index = {
        (stave.part_index, stave.measure_index): index
        for index, stave in enumerate(layout_result.staves)
    }

    slurs = []
    for span in layout_result.slurs:
        key = (span.part_index, span.measure_index)
        offset = first_note[key]
        slurs.append(
            {
                "stave": stave_index[key],
                "from": span.note_indices[0] - offset,
                "to": span.note_indices[-1] - offset,
            }
        )

    staves = [
        {
            "part": stave.part_index,
            "measure": stave.measure_index,
            "x": stave.x,
            "y": stave.y,
            "width": stave.width,
            "clef": stave.clef,
            "first": stave.is_first,
            "key_signature": stave.key_signature,
            "time_signature": stave.time_signature,
            "directions": [
                {"text": direction.text, "placement": direction.placement}
                for direction in stave.directions
            ],
            "notes": [
                {
                    "keys": list(note.keys),
                    "duration": note.duration,
                    "accidentals": [[acc.key_index, acc.accidental] for acc in note.accidentals],
                    "annotation": note.annotation,
                    "articulation": note.articulation_code,
                }
                for note in stave.notes
            ],
        }
        for stave in layout_result.staves
    ]

    return {
        "title": music_data.work_title,
        "composer": music_data.composer,
        "beats": music_data.beats_per_measure,
        "beat_value": music_data.beat_unit,
        "width": layout_result.total_width,
        "height": layout_result.height,
        "highlight_color": highlight_color,
        "staves": staves,
        "connectors": [
            {"kind": c.kind, "measure": c.measure_index, "top": c.top_part, "bottom": c.bottom_part}
            for c in layout_result.connectors
        ],
        "slurs": slurs,
    }


def _payload_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":")).replace("</", "<\\/")


def _vexflow_script() -> str:
    """Module script that draws ``#sheetroll-score-data`` into ``#sheetroll-score``."""
    return f"""<script type="module">
  import {{
    Accidental,
    Annotation,
    Articulation,
    Beam,
    Curve,
    Formatter,
    Modifier,
    Renderer,
    Stave,
    StaveConnector,
    StaveNote,
    Voice
  }} from "{VEXFLOW_URL}";

  const host = document.getElementById("sheetroll-score");
  const payloadNode = document.getElementById("sheetroll-score-data");
  if (!host || !payloadNode) {{
    throw new Error("Missing VexFlow score container.");
  }}

  const payload = JSON.parse(payloadNode.textContent || "{{}}");
  const renderer = new Renderer(host, Renderer.Backends.SVG);
  renderer.resize(payload.width, payload.height);
  const context = renderer.getContext();

  const drawn = payload.staves.map((entry) => {{
    const stave = new Stave(entry.x, entry.y, entry.width);
    if (entry.first) {{
      stave.addClef(entry.clef);
      if (entry.key_signature) stave.addKeySignature(entry.key_signature);
      if (entry.time_signature) stave.addTimeSignature(entry.time_signature);
      entry.directions.forEach((direction) => {{
        const position = direction.placement === "below"
          ? Modifier.Position.BELOW
          : Modifier.Position.ABOVE;
        stave.setText(direction.text, position);
      }});
    }}
    stave.setContext(context).draw();

    const notes = entry.notes.map((note) => {{
      const staveNote = new StaveNote({{ clef: entry.clef, keys: note.keys, duration: note.duration }});
      note.accidentals.forEach(([index, symbol]) => {{
        staveNote.addModifier(new Accidental(symbol), index);
      }});
      if (note.annotation) {{
        staveNote.addModifier(new Annotation(note.annotation).setVerticalJustification(3), 0);
      }}
      if (note.articulation) {{
        staveNote.addModifier(new Articulation(note.articulation).setPosition(3), 0);
      }}
      return staveNote;
    }});

    if (notes.length > 0) {{
      const voice = new Voice({{ num_beats: payload.beats, beat_value: payload.beat_value }});
      voice.setMode(Voice.Mode.SOFT);
      voice.addTickables(notes);
      const beams = Beam.generateBeams(notes);
      new Formatter().joinVoices([voice]).format([voice], entry.width - 50);
      voice.draw(context, stave);
      beams.forEach((beam) => beam.setContext(context).draw());
    }}
    return {{ entry, stave, notes }};
  }});

  payload.slurs.forEach((slur) => {{
    const notes = drawn[slur.stave].notes;
    new Curve(notes[slur.from], notes[slur.to]).setContext(context).draw();
  }});

  const types = {{
    brace: StaveConnector.type.BRACE,
    single_left: StaveConnector.type.SINGLE_LEFT,
    single_right: StaveConnector.type.SINGLE_RIGHT,
  }};
  payload.connectors.forEach((connector) => {{
    const top = drawn.find((d) => d.entry.part === connector.top && d.entry.measure === connector.measure);
    const bottom = drawn.find((d) => d.entry.part === connector.bottom && d.entry.measure === connector.measure);
    if (!top || !bottom) return;
    const line = new StaveConnector(top.stave, bottom.stave);
    line.setType(types[connector.kind]);
    line.setContext(context).draw();
  }});
</script>"""


class SheetRenderer(ABC):
    """Abstract sheet renderer."""

    @property
    @abstractmethod
    def default_extension(self) -> str:
        """Default filename extension for this renderer."""

    @abstractmethod
    def render(
        self,
        *,
        music_data: MusicData,
        layout_result: LayoutResult,
        highlight_color: str = DEFAULT_HIGHLIGHT_COLOR,
    ) -> str:
        """Render output into a file content string."""


class VexflowHtmlRenderer(SheetRenderer):
    """Render a laid-out score into a self-contained HTML page drawn by VexFlow."""

    @property
    def default_extension(self) -> str:
        return ".html"

    def render(
        self,
        *,
        music_data: MusicData,
        layout_result: LayoutResult,
        highlight_color: str = DEFAULT_HIGHLIGHT_COLOR,
    ) -> str:
        title_safe = _escape_html(music_data.work_title)
        composer_safe = _escape_html(music_data.composer)
        score_json = _payload_json(build_payload(music_data, layout_result, highlight_color))

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>{title_safe}</title>
  <style>
    body {{
      font-family: Georgia, serif;
      background: #f0f0f0;
      margin: 0;
      padding: 2rem;
    }}
    h1, h2 {{
      text-align: center;
      color: #222;
    }}
    h2 {{
      font-size: 1rem;
      font-weight: normal;
    }}
    #sheetroll-viewport {{
      background: #fff;
      box-shadow: 0 2px 8px rgba(0, 0, 0, 0.15);
      overflow-x: auto;
      padding: 1rem 0;
    }}
  </style>
</head>
<body>
  <h1>{title_safe}</h1>
  <h2>{composer_safe}</h2>
  <div id="sheetroll-viewport"><div id="sheetroll-score"></div></div>
  <script id="sheetroll-score-data" type="application/json">{score_json}</script>
  {_vexflow_script()}
</body>
</html>"""


class VexflowMarkdownRenderer(SheetRenderer):
    """Render a laid-out score into Markdown with an embedded VexFlow script."""

    @property
    def default_extension(self) -> str:
        return ".md"

    def render(
        self,
        *,
        music_data: MusicData,
        layout_result: LayoutResult,
        highlight_color: str = DEFAULT_HIGHLIGHT_COLOR,
    ) -> str:
        score_json = _payload_json(build_payload(music_data, layout_result, highlight_color))

        return f"""# {_escape_html(music_data.work_title)}

*{_escape_html(music_data.composer)}*

This Markdown uses embedded JavaScript + VexFlow. Open it in a Markdown viewer that allows script execution.

<div id="sheetroll-score"></div>
<script id="sheetroll-score-data" type="application/json">{score_json}</script>
{_vexflow_script()}
"""


SUPPORTED_FORMATS: Final[dict[str, type[SheetRenderer]]] = {
    "html": VexflowHtmlRenderer,
    "md-vexflow": VexflowMarkdownRenderer,
}


def build_renderer(output_format: str) -> SheetRenderer:
    """
    Return the renderer for ``output_format``.

    Raises:
        ValueError: If the format is not one of :data:`SUPPORTED_FORMATS`.
    """
    normalized = output_format.strip().lower()
    if normalized not in SUPPORTED_FORMATS:
        supported = ", ".join(sorted(SUPPORTED_FORMATS))
        raise ValueError(f"Unsupported output format '{output_format}'. Use one of: {supported}.")
    return SUPPORTED_FORMATS[normalized]()
