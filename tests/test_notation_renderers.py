"""Unit tests for the VexFlow renderers and their JSON payload."""

import json
import re

import pytest

from sheetroll.measure_layout import layout
from sheetroll.notation_renderers import (
    VexflowHtmlRenderer,
    VexflowMarkdownRenderer,
    build_payload,
    build_renderer,
)
from sheetroll.score_models import ChordAccidental, Direction, MusicData, Note, Part


def _sample_music(title: str = "Demo") -> MusicData:
    treble = Part(
        id="P1_1",
        name="Piano Staff 1",
        clef="treble",
        notes=(
            Note(keys=("g/4", "c#/4"), duration="8", time=0.0, accidentals=(ChordAccidental(1, "#"),), slur="start"),
            Note(keys=("d/4",), duration="8", time=0.5, dynamic="p"),
            Note(keys=("e/4",), duration="h", time=1.0, articulation="accent", slur="stop"),
        ),
        directions=(Direction(0, "cantabile"),),
    )
    bass = Part(id="P1_2", name="Piano Staff 2", clef="bass", notes=(Note(keys=("c/3",), duration="w", time=0.0),))
    return MusicData(work_title=title, composer="Composer", parts=(treble, bass))


def _payload_from(content: str) -> dict:
    match = re.search(r'<script id="sheetroll-score-data" type="application/json">(.*?)</script>', content)
    assert match is not None
    return json.loads(match.group(1).replace("<\\/", "</"))


def test_payload_lists_staves_with_sorted_keys_and_modifiers() -> None:
    music = _sample_music()
    payload = build_payload(music, layout(music))
    first = payload["staves"][0]
    assert first["clef"] == "treble"
    assert first["first"] is True
    assert first["time_signature"] == "4/4"
    assert first["directions"] == [{"text": "cantabile", "placement": "above"}]
    assert first["notes"][0]["keys"] == ["c#/4", "g/4"]
    assert first["notes"][0]["accidentals"] == [[0, "#"]]
    assert first["notes"][1]["annotation"] == "P"
    assert first["notes"][2]["articulation"] == "a>"


def test_payload_slurs_use_positions_within_stave() -> None:
    music = _sample_music()
    payload = build_payload(music, layout(music))
    assert payload["slurs"] == [{"stave": 0, "from": 0, "to": 2}]


def test_payload_connectors_and_highlight() -> None:
    music = _sample_music()
    payload = build_payload(music, layout(music), highlight_color="#ff0000")
    assert payload["highlight_color"] == "#ff0000"
    assert [c["kind"] for c in payload["connectors"]] == ["brace", "single_left", "single_right"]


def test_html_renderer_escapes_title_and_embeds_script() -> None:
    music = _sample_music(title="Fur & <Feathers>")
    content = VexflowHtmlRenderer().render(music_data=music, layout_result=layout(music))
    assert "<title>Fur &amp; &lt;Feathers&gt;</title>" in content
    assert '<div id="sheetroll-score"></div>' in content
    assert "cdn.jsdelivr.net/npm/vexflow" in content
    assert _payload_from(content)["title"] == "Fur & <Feathers>"


def test_payload_cannot_close_script_tag() -> None:
    music = _sample_music(title="</script><script>alert(1)")
    content = VexflowHtmlRenderer().render(music_data=music, layout_result=layout(music))
    assert "</script><script>alert(1)" not in content


def test_markdown_renderer_has_heading() -> None:
    music = _sample_music(title="My Song")
    content = VexflowMarkdownRenderer().render(music_data=music, layout_result=layout(music))
    assert content.startswith("# My Song")
    assert 'type="module"' in content


def test_build_renderer_by_format() -> None:
    assert build_renderer("HTML").default_extension == ".html"
    assert build_renderer("md-vexflow").default_extension == ".md"
    with pytest.raises(ValueError):
        build_renderer("pdf")
