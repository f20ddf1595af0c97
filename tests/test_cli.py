"""Tests for the operator CLI."""

import logging

import pytest
from click.testing import CliRunner

from fieldops import __version__
from fieldops.cli import Services, main
from fieldops.config import FieldOpsConfig
from fieldops.domain.models import JobStatus


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner(env={"COLUMNS": "200"})


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers bound to the runner's streams once a test ends."""
    yield
    logging.getLogger("fieldops").handlers.clear()


@pytest.fixture
def services(gateway, queue, connectivity, notifier) -> Services:
    return Services(
        config=FieldOpsConfig(max_replay_attempts=2),
        gateway=gateway,
        queue=queue,
        connectivity=connectivity,
        notifier=notifier,
    )


def invoke(runner, services, *args):
    return runner.invoke(main, list(args), obj=services)


class TestQueueCommands:
    """Tests for inspecting and repairing the queue."""

    def test_version(self, runner) -> None:
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_list_empty(self, runner, services) -> None:
        result = invoke(runner, services, "queue", "list")

        assert result.exit_code == 0
        assert "Queue is empty." in result.output

    def test_list_shows_items(self, runner, services, queue) -> None:
        queue.enqueue("update_job", {"job_id": "job-1", "fields": {}})
        item = queue.enqueue("add_job_part", {"job_id": "job-1"})
        queue.record_failure(item.action_id, "rejected", dead_letter=True)

        result = invoke(runner, services, "queue", "list")

        assert result.exit_code == 0
        assert "update_job" in result.output
        assert "add_job_part" in result.output
        assert "dead letter" in result.output

    def test_sync_applies_queue(self, runner, services, queue, gateway, open_job) -> None:
        queue.enqueue("update_job", {"job_id": open_job.job_id, "fields": {"office_notes": "x"}})

        result = invoke(runner, services, "queue", "sync")

        assert result.exit_code == 0
        assert "Applied 1, remaining 0." in result.output
        assert gateway.jobs[open_job.job_id]["office_notes"] == "x"
        assert queue.list_all() == []

    def test_sync_stops_at_failure(self, runner, services, queue) -> None:
        queue.enqueue("update_job", {"job_id": "job-missing", "fields": {}})

        result = invoke(runner, services, "queue", "sync")

        assert result.exit_code == 1
        assert "Applied 0, remaining 1." in result.output
        assert "Stopped at #1" in result.output
        assert queue.list_all()[0].attempts == 1

    def test_retry_resets_dead_letter(self, runner, services, queue) -> None:
        item = queue.enqueue("update_job", {"job_id": "job-1", "fields": {}})
        queue.record_failure(item.action_id, "rejected", dead_letter=True)

        result = invoke(runner, services, "queue", "retry", str(item.action_id))

        assert result.exit_code == 0
        assert f"Reset #{item.action_id} 'update_job'." in result.output
        assert not queue.get(item.action_id).is_dead_letter

    def test_retry_unknown_id(self, runner, services) -> None:
        result = invoke(runner, services, "queue", "retry", "99")

        assert result.exit_code == 1
        assert "No queued action #99" in result.output

    def test_drop_discards_item(self, runner, services, queue) -> None:
        item = queue.enqueue("update_job", {"job_id": "job-1", "fields": {}})

        result = invoke(runner, services, "queue", "drop", str(item.action_id), "--yes")

        assert result.exit_code == 0
        assert f"Discarded #{item.action_id} 'update_job'." in result.output
        assert queue.list_all() == []

    def test_drop_unknown_id(self, runner, services) -> None:
        result = invoke(runner, services, "queue", "drop", "42", "--yes")

        assert result.exit_code == 1
        assert "No queued action #42" in result.output

    def test_drop_requires_confirmation(self, runner, services, queue) -> None:
        item = queue.enqueue("update_job", {"job_id": "job-1", "fields": {}})

        result = runner.invoke(
            main, ["queue", "drop", str(item.action_id)], obj=services, input="n\n"
        )

        assert result.exit_code != 0
        assert len(queue.list_all()) == 1


class TestJobCommands:
    def test_durations(self, runner, services, gateway, open_job, clock) -> None:
        clock.advance(minutes=65)
        gateway.set_job_status(open_job.job_id, JobStatus.ON_THE_WAY)

        result = invoke(runner, services, "job", "durations", open_job.job_id)

        assert result.exit_code == 0
        assert "open" in result.output
        assert "1h 5m" in result.output

    def test_durations_without_history(self, runner, services, open_job) -> None:
        result = invoke(runner, services, "job", "durations", open_job.job_id)

        assert "No completed status periods yet." in result.output


class TestConfigErrors:
    def test_invalid_config_file(self, runner, tmp_path) -> None:
        path = tmp_path / "fieldops.json"
        path.write_text("{")

        result = runner.invoke(main, ["--config", str(path), "queue", "list"])

        assert result.exit_code == 1
        assert "Invalid JSON" in result.output
