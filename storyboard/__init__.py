"""Storyboard film-grammar rules and image-prompt rendering."""

from .grammar import (
    CAMERA_ANGLES,
    COMPLIANCE_FOOTER,
    COMPOSITION_RULES,
    LENS_CHARACTERISTICS,
    SHOT_SIZES,
    STORYBOARD_STYLE,
    FrameReport,
    FrameStrategy,
    SequenceReport,
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

__all__ = [
    "SHOT_SIZES",
    "CAMERA_ANGLES",
    "LENS_CHARACTERISTICS",
    "COMPOSITION_RULES",
    "COMPLIANCE_FOOTER",
    "STORYBOARD_STYLE",
    "FrameReport",
    "FrameStrategy",
    "SequenceReport",
    "frame_id",
    "normalize_shot_size",
    "normalize_camera_angle",
    "normalize_lens",
    "normalize_composition",
    "validate_frame",
    "validate_sequence",
    "render_image_prompt",
    "multi_frame_strategy",
]
