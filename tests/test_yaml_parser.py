import logging

import pytest
import yaml

from yaml_parser import load_brief, load_yaml_file, normalize_key, normalize_keys_recursive


@pytest.fixture
def yaml_dir(tmp_path):
    (tmp_path / "valid.yaml").write_text(
        yaml.dump({"Film Idea": {"Working Title": "Night Courier"}, "genre": "Noir"}),
        encoding="utf-8",
    )
    (tmp_path / "malformed.yaml").write_text("idea: [unclosed", encoding="utf-8")
    (tmp_path / "empty.yaml").write_text("", encoding="utf-8")
    (tmp_path / "list.yaml").write_text("- one\n- two", encoding="utf-8")
    (tmp_path / "brief.yml").write_text(
        "idea: A courier crosses a divided city\n"
        "Genre: thriller\n"
        "targetLength: 20 min\n"
        "low-budget: true\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.mark.parametrize(
    "key, expected",
    [
        ("Target Length", "target_length"),
        ("targetLength", "target_length"),
        ("target-length", "target_length"),
        ("domainStep", "domain_step"),
        ("idea", "idea"),
    ],
)
def test_normalize_key(key, expected):
    assert normalize_key(key) == expected


def test_normalize_keys_recursive_handles_lists():
    data = {"Scene List": [{"Scene Number": 1}], "plain": "Value Kept"}
    assert normalize_keys_recursive(data) == {
        "scene_list": [{"scene_number": 1}],
        "plain": "Value Kept",
    }


def test_load_valid_yaml(yaml_dir):
    data = load_yaml_file(str(yaml_dir / "valid.yaml"))
    assert data == {"film_idea": {"working_title": "Night Courier"}, "genre": "Noir"}

    raw = load_yaml_file(str(yaml_dir / "valid.yaml"), normalize_keys=False)
    assert "Film Idea" in raw


def test_load_yaml_failures(yaml_dir, caplog):
    caplog.set_level(logging.WARNING)
    assert load_yaml_file(str(yaml_dir / "malformed.yaml")) is None
    assert load_yaml_file(str(yaml_dir / "list.yaml")) is None
    assert load_yaml_file(str(yaml_dir / "missing.yaml")) is None
    assert load_yaml_file(str(yaml_dir / "brief.txt")) is None
    assert any("not found" in r.message for r in caplog.records)
    assert load_yaml_file(str(yaml_dir / "empty.yaml")) == {}


def test_load_brief_with_overrides(yaml_dir):
    request = load_brief(str(yaml_dir / "brief.yml"), genre="noir", script=None)
    assert request.idea == "A courier crosses a divided city"
    assert request.genre == "noir"
    assert request.target_length == "20 min"
    assert request.low_budget is True
    assert request.domain_step == "outline"


def test_load_brief_rejects_invalid_step(yaml_dir):
    path = yaml_dir / "bad_step.yaml"
    path.write_text("genre: noir\ndomain_step: posters\n", encoding="utf-8")
    assert load_brief(str(path)) is None
