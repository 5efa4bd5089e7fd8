from __future__ import annotations

import json
from pathlib import Path

import pytest

from delorean.core.result import Err, Ok
from delorean.core.version import OLM_TYPE_RHMI, OLM_TYPE_RHOAM
from delorean.output.console import MockConsole
from delorean.platform.process import ProcessError
from delorean.services.olm import supported as supported_mod
from delorean.services.olm.checks import check_olm_graph, find_current_csv, write_current_csv
from delorean.services.olm.selector import SupportPolicy
from delorean.services.olm.supported import (
    bundle_versions,
    production_version,
    supported_versions_in,
)


def _bundle(root: Path, name: str, version: str, replaces: str | None) -> None:
    bundle = root / version
    bundle.mkdir(parents=True)
    body = f"metadata:\n  name: {name}.v{version}\nspec:\n  version: {version}\n"
    if replaces:
        body += f"  replaces: {replaces}\n"
    (bundle / f"{name}.v{version}.clusterserviceversion.yaml").write_text(body, encoding="utf-8")


class TestCheckOlmGraph:
    def test_every_subdirectory_passes(self, tmp_path: Path) -> None:
        _bundle(tmp_path / "rhmi", "rhmi", "1.0.0", None)
        _bundle(tmp_path / "rhmi", "rhmi", "1.1.0", "rhmi.v1.0.0")
        _bundle(tmp_path / "single", "x", "1.0.0", None)
        console = MockConsole()

        assert check_olm_graph(tmp_path, baselines=(), console=console) == Ok(None)
        assert "[rhmi] OLM graph is complete" in console.messages
        assert "[single] no graph to check" in console.messages

    def test_broken_subdirectory_fails(self, tmp_path: Path) -> None:
        _bundle(tmp_path / "good", "rhmi", "1.0.0", None)
        _bundle(tmp_path / "good", "rhmi", "1.1.0", "rhmi.v1.0.0")
        _bundle(tmp_path / "bad", "rhoam", "1.0.0", None)
        _bundle(tmp_path / "bad", "rhoam", "1.2.0", "rhoam.v1.1.0")
        console = MockConsole()

        result = check_olm_graph(tmp_path, baselines=(), console=console)
        assert isinstance(result, Err)
        assert result.error.kind == "graph_incomplete"
        assert result.error.missing_target == "rhoam.v1.1.0"
        # The passing directory is still reported.
        assert "[good] OLM graph is complete" in console.messages

    def test_baselines_are_accepted(self, tmp_path: Path) -> None:
        _bundle(tmp_path / "rhmi", "rhmi", "1.0.0", None)
        _bundle(tmp_path / "rhmi", "rhmi", "1.1.0", "keycloak-operator.v9.0.3")
        result = check_olm_graph(
            tmp_path, baselines={"keycloak-operator.v9.0.3"}, console=MockConsole()
        )
        assert result == Ok(None)

    def test_not_a_directory(self, tmp_path: Path) -> None:
        result = check_olm_graph(tmp_path / "missing", baselines=(), console=MockConsole())
        assert isinstance(result, Err)
        assert result.error.kind == "graph_read_failed"


class TestCurrentCSV:
    def test_highest_bundle(self, tmp_path: Path) -> None:
        _bundle(tmp_path, "rhmi", "1.0.0", None)
        _bundle(tmp_path, "rhmi", "1.10.0", "rhmi.v1.0.0")
        _bundle(tmp_path, "rhmi", "1.9.0", "rhmi.v1.0.0")
        result = find_current_csv(tmp_path)
        assert isinstance(result, Ok)
        document, path = result.value
        assert path.parent.name == "1.10.0"
        assert document["metadata"] == {"name": "rhmi.v1.10.0"}

    def test_package_default_channel(self, tmp_path: Path) -> None:
        _bundle(tmp_path, "rhmi", "1.0.0", None)
        _bundle(tmp_path, "rhmi", "1.1.0", "rhmi.v1.0.0")
        (tmp_path / "rhmi.package.yaml").write_text(
            "packageName: rhmi\nchannels:\n- name: alpha\n  currentCSV: rhmi.v1.1.0\n"
            "- name: rhmi\n  currentCSV: rhmi.v1.0.0\ndefaultChannel: rhmi\n",
            encoding="utf-8",
        )
        result = find_current_csv(tmp_path)
        assert isinstance(result, Ok)
        assert result.value[1].parent.name == "1.0.0"

    def test_package_names_missing_csv(self, tmp_path: Path) -> None:
        _bundle(tmp_path, "rhmi", "1.0.0", None)
        (tmp_path / "rhmi.package.yaml").write_text(
            "channels:\n- name: rhmi\n  currentCSV: rhmi.v2.0.0\n", encoding="utf-8"
        )
        result = find_current_csv(tmp_path)
        assert isinstance(result, Err)
        assert result.error.csv_name == "rhmi.v2.0.0"

    def test_single_bundle(self, tmp_path: Path) -> None:
        _bundle(tmp_path, "rhmi", "1.0.0", None)
        result = find_current_csv(tmp_path / "1.0.0")
        assert isinstance(result, Ok)

    def test_write_json(self, tmp_path: Path) -> None:
        _bundle(tmp_path / "manifests", "rhmi", "1.0.0", None)
        _bundle(tmp_path / "manifests", "rhmi", "1.1.0", "rhmi.v1.0.0")
        output = tmp_path / "out" / "csv.json"
        result = write_current_csv(tmp_path / "manifests", output, console=MockConsole())
        assert isinstance(result, Ok)
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["spec"]["replaces"] == "rhmi.v1.0.0"

    def test_empty_directory(self, tmp_path: Path) -> None:
        result = write_current_csv(tmp_path, tmp_path / "csv.json", console=MockConsole())
        assert isinstance(result, Err)
        assert result.error.kind == "graph_empty"


def _managed_tenants(
    root: Path, bundle_folder: str, addon_file: str, versions: list[str]
) -> None:
    for version in versions:
        (root / bundle_folder / version).mkdir(parents=True)
    addon = root / addon_file
    addon.parent.mkdir(parents=True, exist_ok=True)
    addon.write_text(
        "indexImage: quay.io/example/index:latest\n"
        "channels:\n- name: stable\n  currentCSV: managed-api-service.v1.6.0\n",
        encoding="utf-8",
    )


class TestSupportedVersions:
    def test_production_version(self, tmp_path: Path) -> None:
        path = tmp_path / "addon.yaml"
        path.write_text("channels:\n- currentCSV: integreatly-operator.v2.7.0\n", encoding="utf-8")
        result = production_version(path, OLM_TYPE_RHMI)
        assert isinstance(result, Ok)
        assert str(result.value) == "2.7.0"

    def test_production_version_without_channels(self, tmp_path: Path) -> None:
        path = tmp_path / "addon.yaml"
        path.write_text("name: x\n", encoding="utf-8")
        assert isinstance(production_version(path, OLM_TYPE_RHMI), Err)

    def test_bundle_versions_reject_bad_names(self, tmp_path: Path) -> None:
        (tmp_path / "1.0.0").mkdir()
        (tmp_path / "latest").mkdir()
        result = bundle_versions(tmp_path, OLM_TYPE_RHMI)
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"

    def test_rhmi_window(self, tmp_path: Path) -> None:
        paths = supported_mod.olm_paths(OLM_TYPE_RHMI)
        _managed_tenants(
            tmp_path,
            paths.bundle_folder,
            paths.addon_file,
            ["1.3.0", "1.4.0", "1.5.0", "1.5.1", "1.6.0", "1.7.0"],
        )
        result = supported_versions_in(
            tmp_path, olm_type=OLM_TYPE_RHMI, policy=SupportPolicy(1, 3), console=MockConsole()
        )
        assert isinstance(result, Ok)
        assert [str(v) for v in result.value] == ["1.4.0", "1.5.0", "1.5.1", "1.6.0"]

    def test_rhoam_exports_index(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        paths = supported_mod.olm_paths(OLM_TYPE_RHOAM)
        _managed_tenants(tmp_path, paths.bundle_folder, paths.addon_file, [])
        commands: list[list[str]] = []

        def fake_run(cmd: list[str], cwd: Path, *, timeout: float | None = None):
            del timeout
            commands.append(cmd)
            # opm writes the package and bundle folders.
            for version in ("1.5.0", "1.6.0"):
                (cwd / "managed-api-service" / version).mkdir(parents=True, exist_ok=True)
            (cwd / "managed-api-service" / "package.yaml").write_text(
                "channels:\n- currentCSV: managed-api-service.v1.6.0\n", encoding="utf-8"
            )
            return Ok("")

        monkeypatch.setattr(supported_mod, "run_process", fake_run)
        result = supported_versions_in(
            tmp_path, olm_type=OLM_TYPE_RHOAM, policy=SupportPolicy(), console=MockConsole()
        )
        assert isinstance(result, Ok)
        assert [str(v) for v in result.value] == ["1.5.0", "1.6.0"]
        assert commands[0][:3] == ["opm", "index", "export"]
        assert "--index=quay.io/example/index:latest" in commands[0]

    def test_rhoam_export_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        paths = supported_mod.olm_paths(OLM_TYPE_RHOAM)
        _managed_tenants(tmp_path, paths.bundle_folder, paths.addon_file, [])

        def fake_run(cmd: list[str], cwd: Path, *, timeout: float | None = None):
            del cwd, timeout
            return Err(ProcessError(tuple(cmd), 1, "", "unauthorized"))

        monkeypatch.setattr(supported_mod, "run_process", fake_run)
        result = supported_versions_in(
            tmp_path, olm_type=OLM_TYPE_RHOAM, policy=SupportPolicy(), console=MockConsole()
        )
        assert isinstance(result, Err)
        assert result.error.kind == "remote_failed"
        assert result.error.hint == "unauthorized"

    def test_only_the_result_reaches_stdout(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        paths = supported_mod.olm_paths(OLM_TYPE_RHOAM)

        def fake_clone(url: str, dest: Path, *, depth: int | None = None):
            _managed_tenants(dest, paths.bundle_folder, paths.addon_file, [])
            return Ok(None)

        def fake_run(cmd: list[str], cwd: Path, *, timeout: float | None = None):
            del cmd, timeout
            (cwd / "managed-api-service" / "1.6.0").mkdir(parents=True, exist_ok=True)
            (cwd / "managed-api-service" / "package.yaml").write_text(
                "channels:\n- currentCSV: managed-api-service.v1.6.0\n", encoding="utf-8"
            )
            return Ok("")

        monkeypatch.setattr(supported_mod, "clone", fake_clone)
        monkeypatch.setattr(supported_mod, "run_process", fake_run)

        quiet = MockConsole(debug_enabled=False)
        result = supported_mod.supported_versions(
            "https://gitlab.example.com/mt.git",
            tmp_path / "quiet",
            olm_type=OLM_TYPE_RHOAM,
            policy=SupportPolicy(),
            console=quiet,
        )
        assert isinstance(result, Ok)
        assert quiet.messages == []

        verbose = MockConsole()
        supported_mod.supported_versions(
            "https://gitlab.example.com/mt.git",
            tmp_path / "verbose",
            olm_type=OLM_TYPE_RHOAM,
            policy=SupportPolicy(),
            console=verbose,
        )
        assert verbose.messages[0] == "git clone https://gitlab.example.com/mt.git"
