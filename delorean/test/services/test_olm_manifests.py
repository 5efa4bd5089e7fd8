from __future__ import annotations

import os
from pathlib import Path

import yaml

from delorean.core.result import Err, Ok
from delorean.core.version import Version
from delorean.services.olm.manifests import (
    CSVEdits,
    apply_csv_edits,
    copy_image_set,
    csv_name,
    find_package_manifest,
    latest_image_set,
    operator_variant,
    update_csv_file,
    update_package_manifest,
)


def _csv_document() -> dict[str, object]:
    return {
        "apiVersion": "operators.coreos.com/v1alpha1",
        "kind": "ClusterServiceVersion",
        "metadata": {"name": "managed-api-service.v1.4.0", "annotations": {"keep": "me"}},
        "spec": {
            "replaces": "managed-api-service.v1.3.0",
            "version": "1.4.0",
            "installModes": [
                {"type": "OwnNamespace", "supported": True},
                {"type": "SingleNamespace", "supported": False},
            ],
            "install": {
                "spec": {
                    "deployments": [
                        {
                            "name": "rhmi-operator",
                            "spec": {
                                "template": {
                                    "spec": {
                                        "containers": [
                                            {
                                                "name": "operator",
                                                "env": [
                                                    {"name": "KEEP", "value": "1"},
                                                    {"name": "USE_CLUSTER_STORAGE", "value": "true"},
                                                    {
                                                        "name": "ALERTING_EMAIL_ADDRESS",
                                                        "valueFrom": {"secretKeyRef": {}},
                                                    },
                                                ],
                                            },
                                            {"name": "sidecar", "env": []},
                                        ]
                                    }
                                }
                            },
                        }
                    ]
                }
            },
        },
    }


def _operator_env(document: dict[str, object]) -> list[dict[str, object]]:
    spec = document["spec"]
    assert isinstance(spec, dict)
    deployment = spec["install"]["spec"]["deployments"][0]
    return deployment["spec"]["template"]["spec"]["containers"][0]["env"]


class TestNames:
    def test_operator_variant(self) -> None:
        assert operator_variant("managed-api-service", "edge") == "managed-api-service-internal"
        assert operator_variant("managed-api-service", "stable") == "managed-api-service"
        assert operator_variant("managed-api-service", "stage") == "managed-api-service"

    def test_csv_name(self) -> None:
        assert csv_name("rhmi", Version(2, 1, 0)) == "rhmi.v2.1.0"

    def test_csv_name_drops_pre_release(self) -> None:
        assert csv_name("rhmi", Version(2, 1, 0, "rc1")) == "rhmi.v2.1.0"


class TestCSVEdits:
    def test_apply_edits(self) -> None:
        document = _csv_document()
        edits = CSVEdits(
            name="managed-api-service-internal.v1.4.0",
            replaces="managed-api-service-internal.v1.3.0",
            env={"ALERTING_EMAIL_ADDRESS": "qe@example.com", "NEW": "x"},
            remove_env=("USE_CLUSTER_STORAGE",),
        )
        assert apply_csv_edits(document, edits, path=Path("csv.yaml")) == Ok(None)

        metadata = document["metadata"]
        assert isinstance(metadata, dict)
        assert metadata["name"] == "managed-api-service-internal.v1.4.0"
        assert metadata["annotations"] == {"keep": "me"}
        spec = document["spec"]
        assert isinstance(spec, dict)
        assert spec["replaces"] == "managed-api-service-internal.v1.3.0"
        assert {"type": "SingleNamespace", "supported": True} in spec["installModes"]
        assert _operator_env(document) == [
            {"name": "KEEP", "value": "1"},
            {"name": "ALERTING_EMAIL_ADDRESS", "value": "qe@example.com"},
            {"name": "NEW", "value": "x"},
        ]

    def test_no_replaces_removes_field(self) -> None:
        document = _csv_document()
        edits = CSVEdits(name="managed-api-service.v1.4.0", replaces=None)
        assert apply_csv_edits(document, edits, path=Path("csv.yaml")) == Ok(None)
        spec = document["spec"]
        assert isinstance(spec, dict)
        assert "replaces" not in spec

    def test_missing_container(self) -> None:
        document = _csv_document()
        edits = CSVEdits(name="x", replaces=None, container="manager")
        result = apply_csv_edits(document, edits, path=Path("csv.yaml"))
        assert isinstance(result, Err)
        assert result.error.kind == "manifest_shape"

    def test_missing_single_namespace_mode(self) -> None:
        document = _csv_document()
        spec = document["spec"]
        assert isinstance(spec, dict)
        spec["installModes"] = [{"type": "AllNamespaces", "supported": True}]
        result = apply_csv_edits(document, CSVEdits(name="x", replaces=None), path=Path("c"))
        assert isinstance(result, Err)
        assert "SingleNamespace" in result.error.message

    def test_update_csv_file_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "csv.yaml"
        path.write_text(yaml.safe_dump(_csv_document(), sort_keys=False), encoding="utf-8")
        edits = CSVEdits(name="managed-api-service.v1.4.0", replaces="managed-api-service.v1.3.1")
        assert update_csv_file(path, edits) == Ok(None)
        written = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert written["spec"]["replaces"] == "managed-api-service.v1.3.1"
        assert list(written) == ["apiVersion", "kind", "metadata", "spec"]


class TestPackageManifest:
    def test_update_first_channel(self, tmp_path: Path) -> None:
        path = tmp_path / "rhmi.package.yaml"
        path.write_text(
            "packageName: rhmi\nchannels:\n- name: rhmi\n  currentCSV: rhmi.v1.0.0\n"
            "defaultChannel: rhmi\n",
            encoding="utf-8",
        )
        assert find_package_manifest(tmp_path) == path
        assert update_package_manifest(path, "rhmi.v1.1.0") == Ok(None)
        written = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert written["channels"][0]["currentCSV"] == "rhmi.v1.1.0"
        assert written["defaultChannel"] == "rhmi"

    def test_no_channels(self, tmp_path: Path) -> None:
        path = tmp_path / "rhmi.package.yaml"
        path.write_text("packageName: rhmi\n", encoding="utf-8")
        result = update_package_manifest(path, "rhmi.v1.1.0")
        assert isinstance(result, Err)
        assert result.error.kind == "manifest_shape"

    def test_find_package_manifest_absent(self, tmp_path: Path) -> None:
        assert find_package_manifest(tmp_path) is None


class TestImageSets:
    def test_latest_by_version(self, tmp_path: Path) -> None:
        for name in ("rhoams-stage.v1.9.0.yaml", "rhoams-stage.v1.10.0.yaml", "notes.yaml"):
            (tmp_path / name).write_text("x", encoding="utf-8")
        latest = latest_image_set(tmp_path)
        assert latest is not None and latest.name == "rhoams-stage.v1.10.0.yaml"

    def test_unversioned_files_fall_back_to_mtime(self, tmp_path: Path) -> None:
        old = tmp_path / "a.yaml"
        new = tmp_path / "b.yaml"
        old.write_text("x", encoding="utf-8")
        new.write_text("y", encoding="utf-8")
        os.utime(old, (1_000, 1_000))
        os.utime(new, (2_000, 2_000))
        assert latest_image_set(tmp_path) == new

    def test_copy_image_set(self, tmp_path: Path) -> None:
        source = tmp_path / "stage"
        source.mkdir()
        (source / "rhoams-stage.v1.3.0.yaml").write_text("images: []\n", encoding="utf-8")
        result = copy_image_set(
            source, tmp_path / "edge", channel_directory="rhoams-internal", version=Version(1, 4, 0)
        )
        assert isinstance(result, Ok)
        assert result.value.name == "rhoams-internal.v1.4.0.yaml"
        assert result.value.read_text(encoding="utf-8") == "images: []\n"

    def test_copy_without_source(self, tmp_path: Path) -> None:
        result = copy_image_set(
            tmp_path / "missing", tmp_path / "edge", channel_directory="x", version=Version(1, 0, 0)
        )
        assert isinstance(result, Err)
        assert result.error.kind == "manifest_read_failed"
