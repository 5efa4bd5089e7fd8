from __future__ import annotations

import pytest

from delorean.test.architecture._gate import require_arch_checks_enabled
from delorean.test.architecture._utils import (
    delorean_root,
    iter_python_files,
    iter_source_files,
    matches_prefix,
    parse_imports,
)


def _offenders(package: str, forbidden: tuple[str, ...]) -> list[str]:
    root = delorean_root()
    offenders: list[str] = []
    for file_path in iter_python_files(root / package):
        rel = file_path.relative_to(root)
        for item in parse_imports(file_path):
            if any(matches_prefix(item.module, prefix) for prefix in forbidden):
                offenders.append(f"{rel}:{item.line}: forbidden import '{item.module}'")
    return offenders


@pytest.mark.parametrize(
    ("package", "forbidden"),
    [
        ("services", ("delorean.cli",)),
        ("core", ("delorean.cli", "delorean.services", "delorean.git")),
        ("platform", ("delorean.cli", "delorean.services")),
        ("git", ("delorean.cli", "delorean.services")),
    ],
)
def test_lower_layers_do_not_import_upper_layers(package: str, forbidden: tuple[str, ...]) -> None:
    require_arch_checks_enabled()

    offenders = _offenders(package, forbidden)
    assert not offenders, f"{package} layering violations:\n" + "\n".join(offenders)


# Release promotion edits OLM manifests; nothing else crosses service lines.
_ALLOWED_SERVICE_DEPS = {"release": {"olm"}}


def test_services_only_import_allowed_services() -> None:
    require_arch_checks_enabled()

    services = ("aws", "olm", "release", "report")
    offenders: list[str] = []
    for service in services:
        allowed = _ALLOWED_SERVICE_DEPS.get(service, set())
        others = tuple(
            f"delorean.services.{s}" for s in services if s != service and s not in allowed
        )
        offenders.extend(_offenders(f"services/{service}", others))

    assert not offenders, "cross-service imports:\n" + "\n".join(offenders)


def test_rich_is_only_imported_by_the_console() -> None:
    require_arch_checks_enabled()

    root = delorean_root()
    offenders: list[str] = []
    for file_path in iter_source_files():
        rel = file_path.relative_to(root)
        if str(rel) == "output/console.py":
            continue
        for item in parse_imports(file_path):
            if matches_prefix(item.module, "rich"):
                offenders.append(f"{rel}:{item.line}: direct rich import '{item.module}'")

    assert not offenders, "Direct rich usage policy violations:\n" + "\n".join(offenders)
