"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from star_matcher.cli import main
from star_matcher.config import Config
from star_matcher.star_list import read_star_list, write_star_list

from conftest import make_star_field, rotate_scale


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def list_files(tmp_path, star_field, rotated_field):
    path_a = tmp_path / "a.txt"
    path_b = tmp_path / "b.txt"
    write_star_list(path_a, star_field)
    write_star_list(path_b, rotated_field)
    return path_a, path_b


def test_match_writes_json(runner, tmp_path, list_files):
    path_a, path_b = list_files
    output = tmp_path / "result.json"

    result = runner.invoke(main, ["match", str(path_a), str(path_b), "-o", str(output)])

    assert result.exit_code == 0, result.output
    assert "Match found" in result.output
    data = json.loads(output.read_text())
    assert data["transform"]["scale"] == pytest.approx(1.5, abs=0.02)
    assert data["num_matched"] >= 25


def test_match_writes_matched_lists(runner, tmp_path, list_files):
    path_a, path_b = list_files
    prefix = tmp_path / "matched"

    result = runner.invoke(main, ["match", str(path_a), str(path_b), "--matched-prefix", str(prefix)])

    assert result.exit_code == 0, result.output
    matched_a = read_star_list(tmp_path / "matched.A.txt")
    matched_b = read_star_list(tmp_path / "matched.B.txt")
    assert len(matched_a) == len(matched_b)
    assert [p.id for p in matched_a] == [p.id for p in matched_b]


def test_match_fails_with_too_few_stars(runner, tmp_path):
    path = tmp_path / "tiny.txt"
    write_star_list(path, make_star_field(2))

    result = runner.invoke(main, ["match", str(path), str(path)])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_apply_saved_transform(runner, tmp_path, list_files):
    path_a, path_b = list_files
    output = tmp_path / "result.json"
    runner.invoke(main, ["match", str(path_a), str(path_b), "-o", str(output)])
    moved = tmp_path / "moved.txt"

    result = runner.invoke(main, ["apply", str(path_a), str(output), "-o", str(moved)])

    assert result.exit_code == 0, result.output
    expected = {p.id: p for p in read_star_list(path_b)}
    for p in read_star_list(moved):
        assert p.x == pytest.approx(expected[p.id].x, abs=0.01)
        assert p.y == pytest.approx(expected[p.id].y, abs=0.01)


def test_batch_against_reference(runner, tmp_path, star_field, list_files):
    path_a, path_b = list_files
    path_c = tmp_path / "c.txt"
    write_star_list(path_c, rotate_scale(star_field, -10.0, 1.0, dx=5.0, dy=5.0))
    out_dir = tmp_path / "out"

    result = runner.invoke(main, ["batch", str(path_a), str(path_b), str(path_c), "-o", str(out_dir)])

    assert result.exit_code == 0, result.output
    assert "2/2 lists matched" in result.output
    assert (out_dir / "b.json").exists()
    assert (out_dir / "c.json").exists()


def test_init_config(runner, tmp_path):
    path = tmp_path / "config.yaml"

    result = runner.invoke(main, ["init-config", str(path)])

    assert result.exit_code == 0
    assert Config.from_yaml(path) == Config()


def test_output_settings_from_config(runner, tmp_path, list_files):
    path_a, path_b = list_files
    out_dir = tmp_path / "results"
    cfg = Config()
    cfg.output.output_dir = out_dir
    cfg.output.write_matched_lists = True
    config_path = tmp_path / "config.yaml"
    cfg.to_yaml(config_path)

    result = runner.invoke(main, ["match", str(path_a), str(path_b), "-c", str(config_path)])

    assert result.exit_code == 0, result.output
    assert (out_dir / "b.json").exists()
    matched_a = read_star_list(out_dir / "b.matched.A.txt")
    matched_b = read_star_list(out_dir / "b.matched.B.txt")
    assert [p.id for p in matched_a] == [p.id for p in matched_b]


def test_batch_uses_config_output_dir(runner, tmp_path, list_files):
    path_a, path_b = list_files
    out_dir = tmp_path / "from_config"
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"output:\n  output_dir: {out_dir}\n  write_matched_lists: true\nverbose: true\n")

    result = runner.invoke(main, ["batch", str(path_a), str(path_b), "-c", str(config_path)])

    assert result.exit_code == 0, result.output
    assert (out_dir / "b.json").exists()
    assert (out_dir / "b.matched.A.txt").exists()
