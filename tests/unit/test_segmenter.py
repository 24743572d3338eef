from manual_rag.ingest.segmenter import (
    SectionPathBuilder,
    TextBlockSegmenter,
    detect_headings,
    detect_page_breaks,
    extract_figure_captions,
    page_for_offset,
)
from manual_rag.types import BlockKind


def test_markdown_headings_and_warning_block() -> None:
    text = (
        "# Safety\n"
        "Read all instructions.\n"
        "\n"
        "## Electrical\n"
        "WARNING: Risk of electric shock.\n"
        "Unplug before servicing.\n"
        "\n"
        "Normal paragraph here."
    )

    result = TextBlockSegmenter().segment(text)

    assert [(h.level, h.text) for h in result.headings] == [(1, "Safety"), (2, "Electrical")]
    assert [block.kind for block in result.blocks] == [
        BlockKind.HEADING,
        BlockKind.PARAGRAPH,
        BlockKind.HEADING,
        BlockKind.WARNING_BLOCK,
        BlockKind.PARAGRAPH,
    ]
    warning = result.blocks[3]
    assert warning.content == "WARNING: Risk of electric shock.\nUnplug before servicing."
    assert text[warning.start_offset : warning.end_offset] == warning.content


def test_numbered_steps_absorb_continuation_lines() -> None:
    text = (
        "Replacing the filter\n"
        "1. Turn off the unit.\n"
        "2. Open the cover.\n"
        "   Use a coin to twist the latch.\n"
        "- Keep screws in a cup.\n"
        "3. Insert the new filter.\n"
        "After replacement, reset the indicator."
    )

    blocks = TextBlockSegmenter().segment(text).blocks

    assert [block.kind for block in blocks] == [
        BlockKind.PARAGRAPH,
        BlockKind.NUMBERED_STEPS,
        BlockKind.PARAGRAPH,
    ]
    steps = blocks[1].content
    assert steps.startswith("1. Turn off the unit.")
    assert "Use a coin to twist the latch." in steps
    assert "- Keep screws in a cup." in steps
    assert steps.endswith("3. Insert the new filter.")
    assert blocks[2].content == "After replacement, reset the indicator."


def test_bullets_accumulate_into_one_list_block() -> None:
    text = "In the box:\n\n- Heater\n- Remote\n- Manual\n\nSee page two."

    blocks = TextBlockSegmenter().segment(text).blocks

    assert [block.kind for block in blocks] == [
        BlockKind.PARAGRAPH,
        BlockKind.LIST,
        BlockKind.PARAGRAPH,
    ]
    assert blocks[1].content == "- Heater\n- Remote\n- Manual"


def test_empty_input_yields_empty_segmentation() -> None:
    segmenter = TextBlockSegmenter()

    for text in ("", "   \n\n  "):
        result = segmenter.segment(text)
        assert result.blocks == []
        assert result.headings == []
        assert result.page_breaks == []


def test_underline_caps_and_numbered_headings() -> None:
    text = (
        "Getting Started\n"
        "===============\n"
        "Unpack the unit.\n"
        "\n"
        "SAFETY INFORMATION\n"
        "Keep the unit dry.\n"
        "\n"
        "2.1 Installation Requirements\n"
        "Leave space around the vents."
    )

    result = TextBlockSegmenter().segment(text)

    assert [(h.level, h.text) for h in result.headings] == [
        (1, "Getting Started"),
        (1, "Safety Information"),
        (2, "Installation Requirements"),
    ]
    assert all("===" not in block.content for block in result.blocks)


def test_warning_label_line_is_not_a_heading() -> None:
    text = "WARNING\nHot surface. Do not touch."

    result = TextBlockSegmenter().segment(text)

    assert result.headings == []
    assert [block.kind for block in result.blocks] == [BlockKind.WARNING_BLOCK]


def test_heading_detection_skips_marker_offsets() -> None:
    text = "OVERVIEW\nThe unit heats quickly."

    assert [h.text for h in detect_headings(text)] == ["Overview"]
    assert detect_headings(text, skip_offsets=frozenset({0})) == []


def test_form_feed_page_breaks() -> None:
    text = "Page one text.\fPage two text.\fPage three."

    breaks = detect_page_breaks(text)

    assert [b.page_number for b in breaks] == [2, 3]
    assert page_for_offset(0, breaks) == 1
    assert page_for_offset(text.index("two"), breaks) == 2
    assert page_for_offset(len(text) - 1, breaks) == 3


def test_page_label_markers_are_detected_and_excluded_from_blocks() -> None:
    text = "Page 1\nIntro text.\nPage 2\nMore text.\nPage 3\nEnd text."

    result = TextBlockSegmenter().segment(text)

    assert [b.page_number for b in result.page_breaks] == [1, 2, 3]
    assert all("Page" not in block.content for block in result.blocks)


def test_dashed_page_markers() -> None:
    text = "Intro\n- 1 -\nBody one\n- 2 -\nBody two"

    assert [b.page_number for b in detect_page_breaks(text)] == [1, 2]


def test_bare_page_numbers_need_an_increasing_run_of_three() -> None:
    assert detect_page_breaks("Intro\n\n12\n\nMore text") == []
    assert detect_page_breaks("a\n3\nb\n2\nc\n1\n") == []
    assert [b.page_number for b in detect_page_breaks("a\n1\nb\n2\nc\n3\n")] == [1, 2, 3]


def test_section_path_builder_pops_siblings_and_deeper_levels() -> None:
    builder = SectionPathBuilder()

    builder.push(1, "Safety")
    builder.push(2, "Electrical")
    assert builder.path == "Safety/Electrical"

    builder.push(2, "Gas")
    assert builder.path == "Safety/Gas"

    builder.push(1, "Maintenance")
    assert builder.path == "Maintenance"


def test_figure_captions_are_collected() -> None:
    text = "Figure 1: Front panel\nSome text.\nFig. 2. Rear vents"

    assert extract_figure_captions(text) == ["Figure 1: Front panel", "Fig. 2. Rear vents"]
