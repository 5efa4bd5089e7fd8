from __future__ import annotations

from pathlib import Path

from delorean.core.context import RunContext
from delorean.core.result import Err, Ok
from delorean.output.console import MockConsole
from delorean.services.report.cleanup import (
    BucketCleanup,
    CleanupConfig,
    cleanup_bucket,
    load_cleanup_config,
    run_cleanup,
)
from delorean.services.report.importer import ProcessedTag
from delorean.test.services._fakes import InMemoryStore

BOTH = BucketCleanup(
    bucket="results",
    tags=(ProcessedTag(key="rp", value="true"), ProcessedTag(key="polarion", value="true")),
)


class TestLoadCleanupConfig:
    def test_loads_buckets(self, tmp_path: Path) -> None:
        path = tmp_path / "cleanup.yaml"
        path.write_text(
            "configs:\n"
            "- bucket: results\n  tags:\n  - key: rp\n    value: 'true'\n"
            "  - key: polarion\n    value: 'true'\n"
            "- bucket: downtime\n  tags:\n  - key: datahub\n    value: 'true'\n",
            encoding="utf-8",
        )
        result = load_cleanup_config(path)
        assert isinstance(result, Ok)
        assert result.value.configs[0] == BOTH
        assert result.value.configs[1].bucket == "downtime"

    def test_bucket_is_required(self, tmp_path: Path) -> None:
        path = tmp_path / "cleanup.yaml"
        path.write_text("configs:\n- tags: []\n", encoding="utf-8")
        result = load_cleanup_config(path)
        assert isinstance(result, Err)
        assert "configs[0] needs a bucket" in result.error.message

    def test_missing_file(self, tmp_path: Path) -> None:
        assert isinstance(load_cleanup_config(tmp_path / "absent.yaml"), Err)


class TestCleanupBucket:
    def test_moves_only_fully_tagged_objects(self) -> None:
        store = InMemoryStore()
        store.add("results", "done.zip", b"d", rp="true", polarion="true")
        store.add("results", "half.zip", b"h", rp="true")
        store.add("results", "new.zip", b"n")

        result = cleanup_bucket(BOTH, store=store, console=MockConsole())
        assert result == Ok(["done.zip"])
        assert ("results", "archive/done.zip") in store.objects
        assert ("results", "done.zip") not in store.objects
        assert ("results", "half.zip") in store.objects

    def test_failed_copy_keeps_the_object(self) -> None:
        store = InMemoryStore(fail_copy={"done.zip"})
        store.add("results", "done.zip", b"d", rp="true", polarion="true")
        console = MockConsole()

        result = cleanup_bucket(BOTH, store=store, console=console)
        assert result == Ok([])
        assert ("results", "done.zip") in store.objects
        assert console.has_warning()

    def test_archive_is_not_revisited(self) -> None:
        store = InMemoryStore()
        store.add("results", "archive/old.zip", b"o", rp="true", polarion="true")
        result = cleanup_bucket(BOTH, store=store, console=MockConsole())
        assert result == Ok([])


def test_run_cleanup_over_buckets() -> None:
    store = InMemoryStore()
    store.add("results", "a.zip", b"a", rp="true", polarion="true")
    store.add("downtime", "downtime-report-1.yaml", b"x", datahub="true")
    config = CleanupConfig(
        configs=(
            BOTH,
            BucketCleanup(bucket="downtime", tags=(ProcessedTag(key="datahub"),)),
        )
    )
    result = run_cleanup(config, store=store, console=MockConsole(), ctx=RunContext.background())
    assert result == Ok({"results": ["a.zip"], "downtime": ["downtime-report-1.yaml"]})
