import pytest
from fakes import words

from processing.text_assembler import (
    append_chunk,
    estimate_pages,
    has_ending,
    needs_top_off,
    normalize_script,
    strip_ending,
)


def test_append_chunk_drops_exact_overlap():
    previous = "INT. DINER - NIGHT\n\nMARA slides the envelope across the table."
    chunk = "slides the envelope across the table.\n\nJONAH\nWhat's in it?"
    assert append_chunk(previous, chunk) == (
        "INT. DINER - NIGHT\n\nMARA slides the envelope across the table."
        "\n\nJONAH\nWhat's in it?"
    )


def test_append_chunk_joins_mid_line_overlap_without_newline():
    previous = "The train pulls away from the platform at dawn"
    chunk = "away from the platform at dawn, leaving MARA alone."
    assert append_chunk(previous, chunk) == (
        "The train pulls away from the platform at dawn, leaving MARA alone."
    )


def test_append_chunk_drops_repeated_boundary_line():
    previous = "EXT. PIER - DAY\n\nGulls wheel overhead."
    chunk = "Gulls wheel overhead.\nMARA walks to the end of the pier."
    result = append_chunk(previous, chunk, min_overlap=500)
    assert result == "EXT. PIER - DAY\n\nGulls wheel overhead.\n\nMARA walks to the end of the pier."


def test_append_chunk_plain_join():
    assert append_chunk("FIRST PART.", "SECOND PART.") == "FIRST PART.\n\nSECOND PART."
    assert append_chunk("", "\n\nOnly chunk.\n") == "Only chunk."
    assert append_chunk("Kept.", "   \n") == "Kept."


def test_append_chunk_fully_overlapping_chunk_adds_nothing():
    previous = "MARA opens the door and steps into the rain."
    assert append_chunk(previous, "opens the door and steps into the rain.") == previous


def test_normalize_script_removes_markers_and_duplicates():
    text = (
        "FADE IN:\n\nINT. ROOM - DAY\n\nAction.\n\n[[CHUNK 2]]\n"
        "--- PART 2 OF 3 ---\nFADE IN:\n\n(CONTINUED)\nMore action.\n\nTHE END\n\n\n\n"
        "<<END OF CHUNK 2>>\nFinal beat.\n\nTHE END."
    )
    cleaned = normalize_script(text)

    assert cleaned.count("FADE IN:") == 1
    assert cleaned.startswith("FADE IN:")
    assert cleaned.count("THE END") == 1
    assert cleaned.endswith("THE END.")
    assert "CHUNK" not in cleaned and "PART 2" not in cleaned and "CONTINUED" not in cleaned
    assert "\n\n\n" not in cleaned
    assert "More action." in cleaned and "Final beat." in cleaned


def test_normalize_script_empty():
    assert normalize_script("") == ""


def test_estimate_pages_and_top_off():
    text = words(360)
    assert estimate_pages(text, 180) == 2.0
    assert needs_top_off(text, 3, 0.9, 180)
    assert not needs_top_off(text, 2, 0.9, 180)
    assert not needs_top_off(text, 0)
    with pytest.raises(ValueError):
        estimate_pages(text, 0)


def test_strip_ending():
    body, had = strip_ending("Last line.\n\nTHE END")
    assert (body, had) == ("Last line.", True)
    assert strip_ending("THE END\n\nEpilogue.") == ("THE END\n\nEpilogue.", False)
    assert has_ending("Done.\nTHE END.")
    assert not has_ending("The end is near.")
