"""Tests for ConfigurationAggregate."""

import json
from unittest.mock import MagicMock

import pytest
import yaml

from conftest import OtherStubItem, StubItem
from converge.errors import ConfigValidationError, CriticalOperationError, OperationFailure
from converge.items.aggregate import ConfigurationAggregate
from converge.models.results import ItemStatus


def failing_pool(**kwargs):
    raise RuntimeError("can't start new thread")


class TestCollection:
    """Tests for item management."""

    def test_add_none_rejected(self):
        aggregate = ConfigurationAggregate("workstation")
        with pytest.raises(ConfigValidationError):
            aggregate.add_item(None)

    def test_empty_name_rejected(self):
        with pytest.raises(ConfigValidationError):
            ConfigurationAggregate("")

    def test_duplicates_allowed_with_warning(self, caplog):
        aggregate = ConfigurationAggregate("workstation", [StubItem("a")])
        aggregate.add_item(StubItem("a"))

        assert len(aggregate) == 2
        assert "already contains an item named 'a'" in caplog.text

    def test_remove_and_get(self):
        aggregate = ConfigurationAggregate("workstation", [StubItem("a"), StubItem("b")])

        assert aggregate.remove_item("a") is True
        assert aggregate.remove_item("missing") is False
        assert aggregate.get_item("a") is None
        assert aggregate.get_item("b").name == "b"

    def test_mutation_updates_last_modified(self):
        aggregate = ConfigurationAggregate("workstation")
        before = aggregate.last_modified

        aggregate.add_item(StubItem("a"))

        assert aggregate.last_modified >= before
        assert aggregate.created <= aggregate.last_modified

    def test_select_items_filters_combine(self):
        aggregate = ConfigurationAggregate("workstation", [
            StubItem("a"), OtherStubItem("b"), StubItem("c", enabled=False),
        ])

        assert [i.name for i in aggregate.select_items(include_type="Stub")] == ["a"]
        assert [i.name for i in aggregate.select_items(exclude_type="Stub")] == ["b"]
        assert [i.name for i in aggregate.select_items(
            include_type=["Stub", "OtherStub"], exclude_type="OtherStub"
        )] == ["a"]
        assert len(aggregate.select_items(enabled_only=False)) == 3


class TestTestAll:
    """Tests for test_all."""

    def test_pass_fail_error_disabled(self):
        """One passing, one failing, one raising and one disabled item."""
        aggregate = ConfigurationAggregate("workstation", [
            StubItem("passing", passes=True),
            StubItem("failing", passes=False),
            StubItem("raising", error=RuntimeError("check exploded")),
            StubItem("disabled", passes=True, enabled=False),
        ])

        report = aggregate.test_all()

        assert report.total == 3
        assert report.passed == 1
        assert report.failed == 2
        assert report.results["raising"].status == ItemStatus.ERROR
        assert report.results["raising"].error == "check exploded"
        assert "disabled" not in report.results

    def test_type_filter(self):
        aggregate = ConfigurationAggregate("workstation", [StubItem("a"), OtherStubItem("b")])

        report = aggregate.test_all(exclude_type="OtherStub")

        assert list(report.results) == ["a"]

    def test_duplicate_names_reported_separately(self):
        aggregate = ConfigurationAggregate("workstation", [StubItem("a", passes=True), StubItem("a")])

        report = aggregate.test_all()

        assert set(report.results) == {"a", "a#2"}

    def test_parallel_matches_sequential(self):
        items = [StubItem(f"item-{i}", passes=i % 2 == 0) for i in range(8)]
        items.append(StubItem("raising", error=ValueError("bad")))
        aggregate = ConfigurationAggregate("workstation", items)

        sequential = aggregate.test_all()
        parallel = aggregate.test_all(parallel=True, max_workers=3)

        assert (parallel.total, parallel.passed, parallel.failed) == (
            sequential.total, sequential.passed, sequential.failed
        )
        assert {k: v.status for k, v in parallel.results.items()} == {
            k: v.status for k, v in sequential.results.items()
        }

    def test_pool_start_failure_falls_back_to_sequential(self, caplog):
        aggregate = ConfigurationAggregate(
            "workstation",
            [StubItem("a", passes=True), StubItem("b")],
            executor_factory=failing_pool,
        )

        report = aggregate.test_all(parallel=True)

        assert report.total == 2
        assert list(report.results) == ["a", "b"]
        assert "falling back to sequential execution" in caplog.text

    def test_pool_start_failure_falls_back_and_shuts_pool_down(self):
        pool = MagicMock()
        pool.submit.side_effect = RuntimeError("cannot schedule new futures")
        aggregate = ConfigurationAggregate(
            "workstation",
            [StubItem("a"), StubItem("b")],
            executor_factory=lambda **kwargs: pool,
        )

        report = aggregate.test_all(parallel=True)

        assert report.total == 2
        pool.shutdown.assert_called_once_with(wait=False)


class TestApplyAll:
    """Tests for apply_all."""

    def test_skips_items_already_in_desired_state(self):
        done = StubItem("done", passes=True)
        pending = StubItem("pending", passes=False)
        aggregate = ConfigurationAggregate("workstation", [done, pending])

        report = aggregate.apply_all()

        assert report.results["done"].status == ItemStatus.SKIPPED
        assert report.results["done"].message == "Already in desired state"
        assert report.results["pending"].status == ItemStatus.APPLIED
        assert (report.applied, report.skipped, report.failed) == (1, 1, 0)
        assert done.apply_calls == 0
        assert pending.apply_calls == 1

    def test_force_does_not_skip(self):
        done = StubItem("done", passes=True)
        aggregate = ConfigurationAggregate("workstation", [done])

        report = aggregate.apply_all(force=True)

        assert report.results["done"].status == ItemStatus.APPLIED
        assert done.apply_calls == 1
        assert done.test_calls == 0

    def test_non_critical_failure_continues(self):
        aggregate = ConfigurationAggregate("workstation", [
            StubItem("broken", apply_error=OperationFailure("disk full")),
            StubItem("next"),
        ])

        report = aggregate.apply_all()

        assert report.results["broken"].status == ItemStatus.FAILED
        assert report.results["broken"].error == "disk full"
        assert report.results["next"].status == ItemStatus.APPLIED
        assert report.success is False
        assert report.aborted is False

    def test_critical_item_failure_aborts(self):
        last = StubItem("last")
        aggregate = ConfigurationAggregate("workstation", [
            StubItem("first"),
            StubItem("critical", apply_error=RuntimeError("boom"), critical=True),
            last,
        ])

        with pytest.raises(CriticalOperationError) as exc_info:
            aggregate.apply_all()

        report = exc_info.value.report
        assert exc_info.value.item_name == "critical"
        assert report.aborted is True
        assert report.critical_error == "boom"
        assert list(report.results) == ["first", "critical"]
        assert last.apply_calls == 0

    def test_critical_operation_failure_aborts(self):
        aggregate = ConfigurationAggregate("workstation", [
            StubItem("a", apply_error=OperationFailure("reboot required", critical=True)),
            StubItem("b"),
        ])

        with pytest.raises(CriticalOperationError) as exc_info:
            aggregate.apply_all()

        assert "b" not in exc_info.value.report.results

    def test_critical_failure_in_parallel_still_raises(self):
        aggregate = ConfigurationAggregate("workstation", [
            StubItem("a"),
            StubItem("critical", apply_error=RuntimeError("boom"), critical=True),
            StubItem("c"),
        ])

        with pytest.raises(CriticalOperationError) as exc_info:
            aggregate.apply_all(parallel=True, max_workers=2)

        assert exc_info.value.report.aborted is True
        assert "critical" in exc_info.value.report.results

    def test_dry_run_does_not_mutate(self):
        pending = StubItem("pending")
        done = StubItem("done", passes=True)
        aggregate = ConfigurationAggregate("workstation", [pending, done])

        report = aggregate.apply_all(dry_run=True)

        assert report.dry_run is True
        assert report.results["pending"].status == ItemStatus.WOULD_APPLY
        assert report.results["done"].status == ItemStatus.SKIPPED
        assert pending.apply_calls == 0
        assert pending.passes is False

    def test_parallel_apply(self):
        items = [StubItem(f"item-{i}", passes=i < 2) for i in range(6)]
        aggregate = ConfigurationAggregate("workstation", items)

        report = aggregate.apply_all(parallel=True, max_workers=4)

        assert (report.applied, report.skipped) == (4, 2)
        assert all(item.passes for item in items)


class TestSerialization:
    """Tests for loading and reporting."""

    def test_state_report(self):
        aggregate = ConfigurationAggregate("workstation", [
            StubItem("a", passes=True), StubItem("b", enabled=False),
        ])

        assert aggregate.get_state_report() == {
            "a": {"Name": "a", "Type": "Stub", "Enabled": True, "Passes": True}
        }
        assert set(aggregate.get_state_report(include_disabled=True)) == {"a", "b"}

    def test_to_dict(self):
        aggregate = ConfigurationAggregate("workstation", [StubItem("a")], metadata={"owner": "me"})

        data = aggregate.to_dict()

        assert data["name"] == "workstation"
        assert data["metadata"] == {"owner": "me"}
        assert data["items"][0]["name"] == "a"

    def test_load_yaml_file(self, tmp_path, factory):
        path = tmp_path / "workstation.yaml"
        path.write_text(yaml.safe_dump({
            "name": "dev-box",
            "version": "2.0.0",
            "items": [
                {"name": "git", "type": "Package", "properties": {"PackageId": "Git.Git"}},
                {"name": "node", "type": "Package", "properties": {"PackageId": "OpenJS.NodeJS"}},
            ],
        }), encoding="utf-8")

        aggregate = ConfigurationAggregate.load_file(path, factory)
        report = aggregate.test_all()

        assert aggregate.name == "dev-box"
        assert aggregate.version == "2.0.0"
        assert (report.passed, report.failed) == (1, 1)

    def test_load_json_file_defaults_name(self, tmp_path, factory):
        path = tmp_path / "base.json"
        path.write_text(json.dumps({"items": [{"name": "wsl", "type": "Feature"}]}), encoding="utf-8")

        aggregate = ConfigurationAggregate.load_file(path, factory)

        assert aggregate.name == "base"
        assert len(aggregate) == 1

    def test_load_invalid_file(self, tmp_path, factory):
        path = tmp_path / "bad.yaml"
        path.write_text("items: {not: a list}", encoding="utf-8")

        with pytest.raises(ConfigValidationError):
            ConfigurationAggregate.load_file(path, factory)
