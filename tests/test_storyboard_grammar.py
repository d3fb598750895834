import pytest

from models import StoryboardFrame
from storyboard import (
    COMPLIANCE_FOOTER,
    STORYBOARD_STYLE,
    frame_id,
    multi_frame_strategy,
    normalize_camera_angle,
    normalize_composition,
    normalize_lens,
    normalize_shot_size,
    render_image_prompt,
    validate_frame,
    validate_sequence,
)


def _frame(**overrides) -> dict:
    frame = {
        "scene": "INT. WAREHOUSE - NIGHT",
        "shotNumber": "1",
        "shotSize": "MS",
        "cameraAngle": "Eye Level",
        "cameraMovement": "Static",
        "lens": "50mm Standard",
        "lighting": "Single hard key from a skylight",
        "composition": "Rule of Thirds",
        "description": "MARA edges along the crates, listening for footsteps.",
        "actionNotes": "Mara moves left to right, pauses at the gap.",
        "imagePrompt": "prompt",
        "characters": ["Mara"],
    }
    frame.update(overrides)
    return frame


@pytest.mark.parametrize(
    "value, expected",
    [
        ("CU", "CU"),
        ("ECU", "ECU"),
        ("Extreme Close-Up", "ECU"),
        ("close up", "CU"),
        ("CU (Close-Up)", "CU"),
        ("Medium Close-Up", "MCU"),
        ("over the shoulder", "OS"),
        ("Two Shot", "2-SHOT"),
        ("2-shot", "2-SHOT"),
        ("Wide", "LS"),
        ("banana", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_shot_size(value, expected):
    assert normalize_shot_size(value) == expected


def test_normalize_other_vocabularies():
    assert normalize_camera_angle("low angle") == "Low Angle"
    assert normalize_camera_angle("Bird's-eye view") == "Bird's Eye"
    assert normalize_camera_angle("sideways") is None
    assert normalize_lens("85mm") == "85mm Portrait"
    assert normalize_lens("35 mm lens") == "35mm Standard"
    assert normalize_lens("200mm") is None
    assert normalize_composition("strict rule of thirds") == "Rule of Thirds"
    assert normalize_composition("golden ratio") is None


def test_valid_frame_reports_rules():
    report = validate_frame(_frame())
    assert report.is_valid
    assert report.errors == []
    assert report.frame_id == "INT. WAREHOUSE - NIGHT - Shot 1"
    assert set(report.rules) == {"shot_size", "angle", "lens", "composition"}


def test_invalid_frame_collects_errors():
    report = validate_frame(
        _frame(shotSize="Huge", cameraAngle="", lens="300mm", description="short", imagePrompt="")
    )
    assert not report.is_valid
    assert any(e.startswith('Invalid shot size "Huge"') for e in report.errors)
    assert "Missing cameraAngle" in report.errors
    assert any(e.startswith('Invalid lens "300mm"') for e in report.errors)
    assert "Description too short or missing (min 20 chars)" in report.errors
    assert "Missing imagePrompt" in report.errors


def test_missing_optional_fields_are_warnings():
    report = validate_frame(_frame(lens="", composition="", cameraMovement="", actionNotes=""))
    assert report.is_valid
    assert report.warnings == [
        "Missing lens specification",
        "Missing composition rule",
        "Missing cameraMovement",
        "Missing actionNotes (blocking/staging)",
    ]


def test_validate_frame_accepts_models():
    frame = StoryboardFrame.model_validate(_frame())
    assert validate_frame(frame).is_valid
    assert frame_id(frame) == "INT. WAREHOUSE - NIGHT - Shot 1"
    assert frame_id({}) == "Unknown - Shot ?"


def test_sequence_warns_on_repetition_and_wide_shots():
    frames = [_frame(shotNumber=str(i), shotSize="LS") for i in range(1, 5)]
    report = validate_sequence(frames)

    assert report.is_valid
    assert "Frame 3: Same shot size (LS) used 3+ times consecutively" in report.warnings
    assert "Frame 4: Same shot size (LS) used 3+ times consecutively" in report.warnings
    assert any(w.startswith("Heavy use of LS (100%)") for w in report.warnings)
    assert report.shot_size_distribution == {"LS": 4}
    assert report.angle_distribution == {"Eye Level": 4}


def test_sequence_counts_failed_frames():
    report = validate_sequence([_frame(), _frame(shotSize="")])
    assert not report.is_valid
    assert report.errors == ["1 frame(s) failed validation"]


def test_render_image_prompt_uses_phrase_tables():
    prompt = render_image_prompt(_frame(shotSize="CU", cameraAngle="low", lens="85mm"))
    lines = prompt.splitlines()

    assert lines[0] == STORYBOARD_STYLE
    assert lines[1] == (
        "close-up, face detail and emotion shot, "
        "shot from below looking up, camera at ground level, subject towers above"
    )
    assert lines[2].startswith("Lens perspective: compressed telephoto")
    assert "Scene: MARA edges along the crates, listening for footsteps." in lines
    assert "Characters: Mara" in lines
    assert lines[-1] == COMPLIANCE_FOOTER


def test_render_image_prompt_skips_empty_lines():
    prompt = render_image_prompt(
        _frame(lens="", actionNotes="", lighting="", composition="", characters=[])
    )
    assert "Lens perspective" not in prompt
    assert "Lighting:" not in prompt
    assert "Characters:" not in prompt
    assert "\n\n" not in prompt


def test_multi_frame_strategy():
    strategy = multi_frame_strategy()
    assert [(s.shot_size, s.angle) for s in strategy] == [
        ("LS", "Eye Level"),
        ("MS", "Eye Level"),
        ("CU", "Low Angle"),
    ]
