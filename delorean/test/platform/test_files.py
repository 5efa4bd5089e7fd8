from __future__ import annotations

from pathlib import Path

from delorean.core.result import Err, Ok
from delorean.platform.files import copy_tree, remove_file
from delorean.platform.yaml_files import dump_yaml, read_yaml, write_yaml


def test_copy_tree_overwrites_and_lists(tmp_path: Path) -> None:
    src = tmp_path / "src"
    (src / "manifests").mkdir(parents=True)
    (src / "manifests" / "csv.yaml").write_text("new", encoding="utf-8")
    (src / "bundle.Dockerfile").write_text("FROM scratch", encoding="utf-8")
    dest = tmp_path / "dest"
    (dest / "manifests").mkdir(parents=True)
    (dest / "manifests" / "csv.yaml").write_text("old", encoding="utf-8")

    result = copy_tree(src, dest)
    assert result == Ok([Path("bundle.Dockerfile"), Path("manifests/csv.yaml")])
    assert (dest / "manifests" / "csv.yaml").read_text(encoding="utf-8") == "new"


def test_copy_tree_missing_source(tmp_path: Path) -> None:
    result = copy_tree(tmp_path / "missing", tmp_path / "dest")
    assert isinstance(result, Err)
    assert "does not exist" in result.error.message


def test_remove_file(tmp_path: Path) -> None:
    path = tmp_path / "f"
    path.write_text("x", encoding="utf-8")
    assert remove_file(path) == Ok(True)
    assert remove_file(path) == Ok(False)
    assert isinstance(remove_file(path, missing_ok=False), Err)


def test_yaml_keeps_key_order_and_unknown_keys(tmp_path: Path) -> None:
    path = tmp_path / "doc.yaml"
    path.write_text("zeta: 1\nalpha:\n  custom: keep\n", encoding="utf-8")
    loaded = read_yaml(path)
    assert isinstance(loaded, Ok)
    assert write_yaml(path, loaded.value) == Ok(None)
    assert path.read_text(encoding="utf-8") == "zeta: 1\nalpha:\n  custom: keep\n"


def test_read_yaml_errors(tmp_path: Path) -> None:
    assert isinstance(read_yaml(tmp_path / "missing.yaml"), Err)
    bad = tmp_path / "bad.yaml"
    bad.write_text("a: [1, 2\n", encoding="utf-8")
    result = read_yaml(bad)
    assert isinstance(result, Err)
    assert "invalid YAML" in result.error.message


def test_dump_yaml_block_style() -> None:
    assert dump_yaml({"a": [1, 2]}) == "a:\n- 1\n- 2\n"
