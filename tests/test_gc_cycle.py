"""Tests for docker_gc/gc_cycle.py running whole cycles against an in-memory engine"""

import os
import time
from unittest.mock import patch

import pytest

from docker_gc.docker_client import DockerCommandError
from docker_gc.gc_cycle import GCCycle, GCResult
from docker_gc.state_store import LAST_RUN, PREV_ALL_IMAGES, PREV_EXITED_CONTAINERS

I1 = "sha256:" + "1" * 64
I2 = "sha256:" + "2" * 64
I3 = "sha256:" + "3" * 64


def run_cycle(engine, store, config, dry_run=None) -> GCResult:
    return GCCycle(engine, store, config, dry_run=dry_run).run()


@pytest.fixture
def host(fake_engine):
    """A running, B stopped, C running; I1 tagged app:v1 and in use, I2 untagged"""
    fake_engine.add_image(I1, "app:v1")
    fake_engine.add_image(I2)
    fake_engine.add_container("A", "app:v1", running=True)
    fake_engine.add_container("B", "app:v1")
    fake_engine.add_container("C", "app:v1", running=True)
    return fake_engine


class TestBootstrap:
    """First cycle on a host without a last-run marker"""

    def test_records_baseline_and_deletes_nothing(self, host, state_store, gc_config):
        result = run_cycle(host, state_store, gc_config)

        assert result.bootstrap
        assert host.deleted_containers == []
        assert host.deleted_images == []
        assert state_store.read(PREV_EXITED_CONTAINERS) == {"B"}
        assert state_store.read(PREV_ALL_IMAGES) == {I1, I2}
        assert state_store.read_timestamp(LAST_RUN) is not None

    def test_ignores_leftover_sets_without_marker(self, host, state_store, gc_config):
        """Sets without a marker come from an interrupted first run; never reap from them"""
        state_store.write(PREV_EXITED_CONTAINERS, {"B"})
        state_store.write(PREV_ALL_IMAGES, {I2})

        result = run_cycle(host, state_store, gc_config)

        assert result.bootstrap
        assert host.deleted_containers == []
        assert host.deleted_images == []

    def test_dry_run_bootstrap_persists_nothing(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config, dry_run=True)

        assert state_store.read(PREV_EXITED_CONTAINERS) is None
        assert state_store.read(PREV_ALL_IMAGES) is None
        assert state_store.read_timestamp(LAST_RUN) is None


class TestSteadyState:
    """Cycles after a baseline exists"""

    def test_two_cycle_scenario(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        host.set_running("C", False)

        result = run_cycle(host, state_store, gc_config)

        assert not result.bootstrap
        assert result.container_candidates == {"B"}
        assert result.image_candidates == {I2}
        assert host.deleted_containers == ["B"]
        assert host.deleted_images == [I2]
        assert set(host.containers) == {"A", "C"}
        assert state_store.read(PREV_EXITED_CONTAINERS) == {"B", "C"}
        assert state_store.read(PREV_ALL_IMAGES) == {I1, I2}
        assert result.success

    def test_containers_deleted_before_their_images(self, fake_engine, state_store, gc_config):
        """An image used only by a reaped container goes in the same cycle"""
        fake_engine.add_image(I3, "tool:1")
        fake_engine.add_container("B", "tool:1")
        run_cycle(fake_engine, state_store, gc_config)

        result = run_cycle(fake_engine, state_store, gc_config)

        assert fake_engine.deleted_containers == ["B"]
        assert fake_engine.deleted_images == [I3]
        assert result.errors == []

    def test_image_of_kept_container_survives(self, fake_engine, state_store, gc_config):
        fake_engine.add_image(I1, "app:v1", "app:latest")
        fake_engine.add_container("A", "app:latest")
        run_cycle(fake_engine, state_store, gc_config)
        fake_engine.set_running("A", True)

        run_cycle(fake_engine, state_store, gc_config)

        assert fake_engine.deleted_images == []
        assert I1 in fake_engine.images

    def test_unused_image_tagged_in_several_repositories_is_deleted(self, fake_engine, state_store, gc_config):
        fake_engine.add_image(I3, "app:v1", "mirror.local/app:v1", "app:latest")
        run_cycle(fake_engine, state_store, gc_config)

        result = run_cycle(fake_engine, state_store, gc_config)

        assert fake_engine.deleted_images == [I3]
        assert I3 not in fake_engine.images
        assert result.success

    def test_image_pulled_after_snapshot_survives_one_cycle(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        host.add_image(I3, "fresh:1")

        result = run_cycle(host, state_store, gc_config)

        assert I3 not in result.image_candidates
        assert state_store.read(PREV_ALL_IMAGES) == {I1, I2, I3}

        # Still unused one cycle later, now it goes
        result = run_cycle(host, state_store, gc_config)
        assert I3 in host.deleted_images

    def test_rerun_after_success_skips_already_deleted_images(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        run_cycle(host, state_store, gc_config)
        deleted_before = list(host.deleted_images)

        result = run_cycle(host, state_store, gc_config)

        assert result.errors == []
        assert I2 in result.skipped_images
        assert host.deleted_images == deleted_before

    def test_marker_advances(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        marker = state_store.get_marker_path(LAST_RUN)
        old = time.time() - 7200
        os.utime(marker, (old, old))

        run_cycle(host, state_store, gc_config)

        assert state_store.read_timestamp(LAST_RUN).timestamp() > old + 3600


class TestFailures:
    """Deletion failures and enumeration failures"""

    def test_container_removed_out_of_band_is_skipped(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        list_all_containers = host.list_all_containers

        def list_then_lose_b():
            ids = list_all_containers()
            del host.containers["B"]
            return ids

        with patch.object(host, "list_all_containers", side_effect=list_then_lose_b):
            result = run_cycle(host, state_store, gc_config)

        assert result.container_candidates == {"B"}
        assert result.skipped_containers == {"B"}
        assert result.errors == []
        assert result.success
        assert host.deleted_images == [I2]

    def test_image_removed_out_of_band_is_skipped(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        list_all_images = host.list_all_images

        def list_then_lose_i2():
            ids = list_all_images()
            del host.images[I2]
            return ids

        with patch.object(host, "list_all_images", side_effect=list_then_lose_i2):
            result = run_cycle(host, state_store, gc_config)

        assert result.skipped_images == {I2}
        assert result.errors == []
        assert host.deleted_containers == ["B"]

    def test_failed_container_deletion_is_isolated(self, fake_engine, state_store, gc_config):
        fake_engine.add_image(I3, "tool:1")
        fake_engine.add_container("B", "tool:1")
        fake_engine.add_container("D", "app:v1")
        fake_engine.add_image(I1, "app:v1")
        fake_engine.fail_container_deletes.add("B")
        run_cycle(fake_engine, state_store, gc_config)

        result = run_cycle(fake_engine, state_store, gc_config)

        assert fake_engine.deleted_containers == ["D"]
        # B still exists, so the engine refuses its image
        assert I3 in fake_engine.images
        assert I1 in fake_engine.deleted_images
        assert len(result.errors) == 2
        assert any(e.startswith("container B") for e in result.errors)
        assert any(e.startswith(f"image {I3}") for e in result.errors)
        assert not result.success

    def test_failed_target_is_retried_next_cycle(self, fake_engine, state_store, gc_config):
        fake_engine.add_image(I3, "tool:1")
        fake_engine.add_container("B", "tool:1")
        fake_engine.fail_container_deletes.add("B")
        run_cycle(fake_engine, state_store, gc_config)
        run_cycle(fake_engine, state_store, gc_config)

        fake_engine.fail_container_deletes.clear()
        result = run_cycle(fake_engine, state_store, gc_config)

        assert fake_engine.deleted_containers == ["B"]
        assert fake_engine.deleted_images == [I3]
        assert result.success

    def test_state_advances_despite_deletion_failures(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        host.fail_image_deletes.add(I2)

        run_cycle(host, state_store, gc_config)

        assert state_store.read(PREV_ALL_IMAGES) == {I1, I2}

    def test_unreachable_engine_changes_nothing(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        before = state_store.read_timestamp(LAST_RUN)
        host.unreachable = DockerCommandError(["docker", "ps"], 1, "Cannot connect to the Docker daemon")

        with pytest.raises(DockerCommandError):
            run_cycle(host, state_store, gc_config)

        assert state_store.read(PREV_EXITED_CONTAINERS) == {"B"}
        assert state_store.read_timestamp(LAST_RUN) == before
        assert host.deleted_containers == []

    def test_image_listing_failure_deletes_nothing(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)

        with patch.object(host, "list_all_images", side_effect=DockerCommandError(["docker", "images"], 1, "boom")):
            with pytest.raises(DockerCommandError):
                run_cycle(host, state_store, gc_config)

        assert host.deleted_containers == []
        assert state_store.read(PREV_EXITED_CONTAINERS) == {"B"}


class TestDryRun:
    def test_dry_run_reports_without_deleting_or_persisting(self, host, state_store, gc_config):
        run_cycle(host, state_store, gc_config)
        before = state_store.read_timestamp(LAST_RUN)

        result = run_cycle(host, state_store, gc_config, dry_run=True)

        assert result.dry_run
        assert result.container_candidates == {"B"}
        assert result.image_candidates == {I2}
        assert host.deleted_containers == []
        assert host.deleted_images == []
        assert state_store.read_timestamp(LAST_RUN) == before
        assert state_store.read(PREV_EXITED_CONTAINERS) == {"B"}

    def test_dry_run_from_config(self, host, state_store, gc_config):
        gc_config.config["gc"]["dry_run"] = True
        run_cycle(host, state_store, gc_config, dry_run=False)
        result = run_cycle(host, state_store, gc_config)

        assert result.dry_run
        assert host.deleted_containers == []


class TestExclusions:
    def test_excluded_container_and_image_are_kept(self, host, state_store, gc_config):
        host.containers["B"]["name"] = "keep-me"
        gc_config.config["gc"]["exclude_containers"] = ["keep-*"]
        gc_config.config["gc"]["exclude_images"] = [I2[len("sha256:"):][:12]]
        run_cycle(host, state_store, gc_config)

        result = run_cycle(host, state_store, gc_config)

        assert host.deleted_containers == []
        assert host.deleted_images == []
        assert result.excluded == {"B", I2}


class TestGCResult:
    def test_summary_rows_count_failures_per_kind(self):
        result = GCResult(
            container_candidates={"B", "C"},
            image_candidates={I2},
            deleted_containers=["C"],
            errors=["container B: refused", f"image {I2}: conflict"],
        )

        rows = {row["Kind"]: row for row in result.summary_rows()}

        assert rows["containers"] == {"Kind": "containers", "Candidates": 2, "Deleted": 1, "Failed": 1}
        assert rows["images"]["Failed"] == 1

    def test_dry_run_summary_uses_would_delete(self):
        result = GCResult(dry_run=True, container_candidates={"B"})
        assert result.summary_rows()[0]["Would delete"] == 1

    def test_to_dict_contains_outcome(self):
        result = GCResult(deleted_images=[I2])
        data = result.to_dict()
        assert data["deleted_images"] == [I2]
        assert data["bootstrap"] is False
