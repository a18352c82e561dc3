"""Tests for the plugin fetch scheduler."""

import asyncio
from typing import List

import pytest

from topix.server.exceptions import FetchInProgressError, PluginExecutionError
from topix.server.plugins.reconcile import ReloadPlan
from topix.server.services.scheduler_service import (
    SchedulerService,
    _crontab_day_of_week,
    is_valid_cron,
    parse_cron,
    plugin_job_id,
)


class StubRuntime:
    """Runtime double recording fetch calls."""

    def __init__(self, plugin_ids=("alpha", "beta"), error=None):
        self.registry = set(plugin_ids)
        self.calls: List[str] = []
        self.error = error
        self.fetching = set()

    async def fetch_one(self, plugin_id):
        self.calls.append(plugin_id)
        if self.error is not None:
            raise self.error
        return []

    def is_fetching(self, plugin_id):
        return plugin_id in self.fetching


def run_with_scheduler(runtime, configs, body):
    """Start a scheduler inside an event loop, run ``body(service)`` and stop it."""

    async def scenario():
        service = SchedulerService(runtime)
        service.start(configs)
        try:
            return body(service)
        finally:
            service.stop()

    return asyncio.run(scenario())


class TestParseCron:
    """Test cases for cron expression parsing."""

    def test_five_fields(self):
        trigger = parse_cron("*/15 * * * *")
        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["minute"] == "*/15"
        assert fields["second"] == "0"

    def test_six_fields_with_seconds(self):
        trigger = parse_cron("30 0 9 * * *")
        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["second"] == "30"
        assert fields["hour"] == "9"

    @pytest.mark.parametrize("expression", ["", "* * *", "* * * * * * *", "61 * * * *", "* 25 * * *", "not a cron"])
    def test_invalid_expressions(self, expression):
        with pytest.raises(ValueError):
            parse_cron(expression)
        assert not is_valid_cron(expression)

    def test_non_string_rejected(self):
        with pytest.raises(ValueError, match="must be a string"):
            parse_cron(15)

    def test_valid(self):
        assert is_valid_cron("0 9 * * 1-5")


class TestDayOfWeek:
    """Test cases for crontab weekday translation."""

    def test_sunday_as_zero_and_seven(self):
        assert _crontab_day_of_week("0") == "sun"
        assert _crontab_day_of_week("7") == "sun"

    def test_weekday_range(self):
        assert _crontab_day_of_week("1-5") == "mon,tue,wed,thu,fri"

    def test_range_wrapping_to_sunday(self):
        assert _crontab_day_of_week("5-7") == "fri,sat,sun"

    def test_list_deduplicates_sunday(self):
        assert _crontab_day_of_week("0,7") == "sun"

    def test_wildcards_and_names_pass_through(self):
        assert _crontab_day_of_week("*") == "*"
        assert _crontab_day_of_week("*/2") == "*/2"
        assert _crontab_day_of_week("mon-fri") == "mon-fri"

    def test_stepped_range(self):
        assert _crontab_day_of_week("1-5/2") == "mon,wed,fri"

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            _crontab_day_of_week("8")


class TestSchedulerService:
    """Test cases for SchedulerService."""

    def test_start_schedules_enabled_loaded_plugins(self, make_config):
        configs = {
            "alpha": make_config("alpha"),
            "beta": make_config("beta", enabled=False),
            "ghost": make_config("ghost"),
        }

        def body(service):
            assert service.is_running
            assert service.is_scheduled("alpha")
            assert not service.is_scheduled("beta")
            assert not service.is_scheduled("ghost")
            assert service.get_next_run("alpha") is not None
            return service.get_status()

        status = run_with_scheduler(StubRuntime(), configs, body)
        assert status["running"]
        assert status["jobs_count"] == 1
        assert status["jobs"][0]["id"] == plugin_job_id("alpha")

    def test_stop(self, make_config):
        async def scenario():
            service = SchedulerService(StubRuntime())
            service.start({"alpha": make_config("alpha")})
            service.stop()
            service.stop()
            return service

        service = asyncio.run(scenario())
        assert not service.is_running
        assert service.get_status() == {"running": False, "jobs_count": 0, "jobs": []}
        assert service.get_next_run("alpha") is None
        assert service.get_plugin_state("alpha") == "unscheduled"

    def test_reschedule_replaces_job(self, make_config):
        def body(service):
            assert service.reschedule_plugin("alpha", "0 9 * * *")
            job = service.scheduler.get_job(plugin_job_id("alpha"))
            return {f.name: str(f) for f in job.trigger.fields}, len(service.scheduler.get_jobs())

        fields, job_count = run_with_scheduler(StubRuntime(), {"alpha": make_config("alpha")}, body)
        assert fields["hour"] == "9"
        assert fields["minute"] == "0"
        assert job_count == 1

    def test_invalid_schedule_keeps_previous_job(self, make_config):
        def body(service):
            assert not service.reschedule_plugin("alpha", "every tuesday")
            job = service.scheduler.get_job(plugin_job_id("alpha"))
            return {f.name: str(f) for f in job.trigger.fields}

        fields = run_with_scheduler(StubRuntime(), {"alpha": make_config("alpha")}, body)
        assert fields["minute"] == "*/15"

    def test_invalid_schedule_at_start_is_not_scheduled(self, make_config):
        def body(service):
            return service.is_scheduled("alpha")

        assert not run_with_scheduler(StubRuntime(), {"alpha": make_config("alpha", schedule="bad")}, body)

    def test_unschedule_is_idempotent(self, make_config):
        def body(service):
            return service.unschedule_plugin("alpha"), service.unschedule_plugin("alpha")

        assert run_with_scheduler(StubRuntime(), {"alpha": make_config("alpha")}, body) == (True, False)

    def test_reschedule_when_stopped(self):
        assert not SchedulerService(StubRuntime()).reschedule_plugin("alpha", "* * * * *")

    def test_apply_plan(self, make_config):
        plan = ReloadPlan(unschedule=["alpha"], schedule={"beta": "0 * * * *"})

        def body(service):
            service.apply_plan(plan)
            return service.is_scheduled("alpha"), service.is_scheduled("beta")

        assert run_with_scheduler(StubRuntime(), {"alpha": make_config("alpha")}, body) == (False, True)

    def test_plugin_state(self, make_config):
        runtime = StubRuntime()

        def body(service):
            states = [service.get_plugin_state("alpha")]
            runtime.fetching.add("alpha")
            states.append(service.get_plugin_state("alpha"))
            states.append(service.get_plugin_state("beta"))
            return states

        states = run_with_scheduler(runtime, {"alpha": make_config("alpha")}, body)
        assert states == ["scheduled", "running", "unscheduled"]


class TestScheduledFetch:
    """Test cases for the job body."""

    def test_job_calls_runtime(self):
        runtime = StubRuntime()
        asyncio.run(SchedulerService(runtime)._run_plugin("alpha"))
        assert runtime.calls == ["alpha"]

    @pytest.mark.parametrize(
        "error",
        [FetchInProgressError("alpha"), PluginExecutionError("alpha", "boom"), RuntimeError("unexpected")],
    )
    def test_job_swallows_fetch_errors(self, error):
        runtime = StubRuntime(error=error)
        asyncio.run(SchedulerService(runtime)._run_plugin("alpha"))
        assert runtime.calls == ["alpha"]

    def test_job_survives_cancellation_of_caller(self):
        runtime = StubRuntime()
        release = None

        async def slow_fetch(plugin_id):
            await release.wait()
            runtime.calls.append(plugin_id)
            return []

        runtime.fetch_one = slow_fetch

        async def scenario():
            nonlocal release
            release = asyncio.Event()
            service = SchedulerService(runtime)
            job = asyncio.ensure_future(service._run_plugin("alpha"))
            await asyncio.sleep(0)
            job.cancel()
            await asyncio.sleep(0)
            inflight = list(service._inflight)
            release.set()
            await asyncio.gather(*inflight)

        asyncio.run(scenario())
        assert runtime.calls == ["alpha"]
