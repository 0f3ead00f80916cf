"""Tests for cronsync.reconciler -- end-to-end reconciliation passes.

A file-backed LocalJobStore plays the scheduler; every tool call is recorded
so tests can assert exactly which list/add/update calls a pass made.
"""

import json

import pytest

from cronsync.client import SchedulerClient
from cronsync.errors import MalformedResponse, MissingIdInResponse, SchedulerUnavailable
from cronsync.local_store import LocalJobStore
from cronsync.mapping import Owner, load_mapping, mapping_key, save_mapping, MappingState, MappingEntry
from cronsync.reconciler import desired_spec, reconcile_cron_jobs, scheduler_fields, spec_hash
from cronsync.specs import normalize_declared_jobs


class RecordingScheduler:
    """Scheduler transport that records every request."""

    def __init__(self, jobs_file):
        self.store = LocalJobStore(jobs_file)
        self.calls = []
        self.fail_on = None
        self.rewrite = None

    def __call__(self, request):
        self.calls.append(request)
        if self.fail_on and self.fail_on(request):
            raise ConnectionError("scheduler went away")
        response = self.store.handle_tool_call(request)
        if self.rewrite:
            response = self.rewrite(request, response)
        return response

    def actions(self):
        return [c["action"] for c in self.calls]

    def updates(self):
        return [c for c in self.calls if c["action"] == "update"]


@pytest.fixture
def scheduler(tmp_path):
    return RecordingScheduler(tmp_path / "scheduler" / "jobs.json")


@pytest.fixture
def mapping_file(tmp_path):
    return tmp_path / "workspace" / "teams" / "qa-team" / "notes" / "cron-jobs.json"


OWNER = Owner.team("qa-team")
RECIPE = "marketing"

DAILY = {"id": "daily-report", "schedule": "0 9 * * *", "message": "send report", "enabledByDefault": True}
WEEKLY = {"id": "weekly-cleanup", "schedule": "0 3 * * 0", "message": "clean up", "enabledByDefault": True}


def _run(scheduler, mapping_file, raw_jobs, mode="on", **kwargs):
    jobs = normalize_declared_jobs(raw_jobs)
    client = SchedulerClient(scheduler)
    return reconcile_cron_jobs(jobs, OWNER, RECIPE, mapping_file, client, mode=mode, **kwargs)


def _entry(mapping_file, job_id):
    return load_mapping(mapping_file).entries.get(mapping_key(OWNER, RECIPE, job_id))


class TestShortCircuits:
    def test_no_jobs(self, scheduler, mapping_file):
        result = _run(scheduler, mapping_file, [])
        assert result.changed is False
        assert result.reason == "no-jobs"
        assert scheduler.calls == []
        assert not mapping_file.exists()

    def test_mode_off_leaves_everything_alone(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY], now_ms=1000)
        before = mapping_file.read_bytes()
        scheduler.calls.clear()

        changed = dict(DAILY, message="something else")
        result = _run(scheduler, mapping_file, [changed, WEEKLY], mode="off", now_ms=2000)

        assert result.reason == "mode-off"
        assert result.changed is False
        assert scheduler.calls == []
        assert mapping_file.read_bytes() == before

    def test_interactive_decline_skips_everything(self, scheduler, mapping_file):
        result = _run(scheduler, mapping_file, [DAILY], mode="prompt",
                      interactive=True, confirm=lambda q: False)
        assert result.reason == "declined"
        assert scheduler.calls == []
        assert not mapping_file.exists()


class TestCreation:
    def test_creates_enabled_job(self, scheduler, mapping_file):
        result = _run(scheduler, mapping_file, [DAILY])

        assert scheduler.actions() == ["add"]
        spec = scheduler.calls[0]["job"]
        assert spec["enabled"] is True
        assert spec["schedule"] == {"kind": "cron", "expr": "0 9 * * *"}
        assert spec["payload"]["message"].startswith("send report")

        [job] = normalize_declared_jobs([DAILY])
        entry = _entry(mapping_file, "daily-report")
        assert entry.spec_hash == spec_hash(desired_spec(job, OWNER))
        assert entry.orphaned is False
        assert scheduler.store.get_job(entry.installed_job_id)["enabled"] is True

        assert result.changed is True
        assert result.jobs == [{"id": "daily-report", "action": "created",
                                "installedJobId": entry.installed_job_id}]

    def test_not_enabled_by_default(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [dict(DAILY, enabledByDefault=False)])
        assert scheduler.calls[0]["job"]["enabled"] is False

    def test_non_interactive_prompt_creates_disabled(self, scheduler, mapping_file):
        result = _run(scheduler, mapping_file, [DAILY], mode="prompt", interactive=False)
        assert result.reason is None
        assert result.opted_in is False
        assert scheduler.calls[0]["job"]["enabled"] is False
        assert _entry(mapping_file, "daily-report") is not None

    def test_interactive_yes_opts_in(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY], mode="prompt", interactive=True, confirm=lambda q: True)
        assert scheduler.calls[0]["job"]["enabled"] is True

    def test_team_stamp_in_message(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        message = scheduler.calls[0]["job"]["payload"]["message"]
        assert message.endswith("[recipes] recipes.teamId=qa-team")

    def test_default_name(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        assert scheduler.calls[0]["job"]["name"] == "qa-team • daily-report"

    def test_declared_order(self, scheduler, mapping_file):
        result = _run(scheduler, mapping_file, [WEEKLY, DAILY])
        assert [j["id"] for j in result.jobs] == ["weekly-cleanup", "daily-report"]


class TestIdempotence:
    def test_second_run_is_a_no_op(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY, WEEKLY], now_ms=1000)
        before = mapping_file.read_bytes()
        scheduler.calls.clear()

        result = _run(scheduler, mapping_file, [DAILY, WEEKLY], now_ms=5000)

        assert result.changed is False
        assert [j["action"] for j in result.jobs] == ["unchanged", "unchanged"]
        assert scheduler.actions() == ["list"]
        assert mapping_file.read_bytes() == before
        assert len(scheduler.store.load_jobs()) == 2

    def test_field_order_does_not_matter(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        scheduler.calls.clear()
        reordered = dict(reversed(list(DAILY.items())))
        result = _run(scheduler, mapping_file, [reordered])
        assert result.changed is False


class TestFastPath:
    def test_first_install_never_lists(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY, WEEKLY])
        assert "list" not in scheduler.actions()

    def test_prior_mapping_lists_once(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        scheduler.calls.clear()
        _run(scheduler, mapping_file, [DAILY, WEEKLY])
        assert scheduler.actions().count("list") == 1
        assert scheduler.actions() == ["list", "add"]


class TestDrift:
    def test_message_change_updates_in_place(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        installed = _entry(mapping_file, "daily-report").installed_job_id
        scheduler.calls.clear()

        changed = dict(DAILY, message="send the full report")
        result = _run(scheduler, mapping_file, [changed])

        assert scheduler.actions() == ["list", "update"]
        update = scheduler.updates()[0]
        assert update["jobId"] == installed
        assert "enabled" not in update["patch"]
        assert update["patch"]["payload"]["message"].startswith("send the full report")

        [job] = normalize_declared_jobs([changed])
        entry = _entry(mapping_file, "daily-report")
        assert entry.installed_job_id == installed
        assert entry.spec_hash == spec_hash(desired_spec(job, OWNER))
        assert result.jobs[0]["action"] == "updated"
        assert result.changed is True

    def test_update_keeps_enabled_state(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        installed = _entry(mapping_file, "daily-report").installed_job_id
        _run(scheduler, mapping_file, [dict(DAILY, schedule="0 10 * * *")])
        job = scheduler.store.get_job(installed)
        assert job["enabled"] is True
        assert job["schedule"]["expr"] == "0 10 * * *"

    def test_deleted_out_of_band_is_recreated(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        old_id = _entry(mapping_file, "daily-report").installed_job_id
        scheduler.store.remove_job(old_id)
        scheduler.calls.clear()

        result = _run(scheduler, mapping_file, [DAILY])

        assert scheduler.actions() == ["list", "add"]
        new_id = _entry(mapping_file, "daily-report").installed_job_id
        assert new_id != old_id
        assert result.jobs[0] == {"id": "daily-report", "action": "created", "installedJobId": new_id}


class TestEnablementPolicy:
    def test_decline_forces_disable(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        installed = _entry(mapping_file, "daily-report").installed_job_id
        scheduler.calls.clear()

        result = _run(scheduler, mapping_file, [DAILY], mode="prompt", interactive=False)

        assert scheduler.updates() == [
            {"action": "update", "jobId": installed, "patch": {"enabled": False}},
        ]
        assert scheduler.store.get_job(installed)["enabled"] is False
        assert result.jobs[0]["action"] == "disabled"
        assert result.changed is True

    def test_already_disabled_is_not_touched(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY], mode="prompt")
        scheduler.calls.clear()
        result = _run(scheduler, mapping_file, [DAILY], mode="prompt")
        assert scheduler.actions() == ["list"]
        assert result.changed is False

    def test_opt_in_does_not_re_enable_paused_job(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        installed = _entry(mapping_file, "daily-report").installed_job_id
        scheduler.store.update_job(installed, {"enabled": False})
        scheduler.calls.clear()

        result = _run(scheduler, mapping_file, [DAILY], mode="on")

        assert scheduler.updates() == []
        assert scheduler.store.get_job(installed)["enabled"] is False
        assert result.jobs[0]["action"] == "unchanged"

    def test_drift_and_disable_both_applied(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        scheduler.calls.clear()
        result = _run(scheduler, mapping_file, [dict(DAILY, message="new")], mode="prompt")
        patches = [u["patch"] for u in scheduler.updates()]
        assert len(patches) == 2
        assert "payload" in patches[0]
        assert patches[1] == {"enabled": False}
        assert result.jobs[0]["action"] == "disabled"


class TestOrphans:
    def test_removed_job_is_disabled_and_kept(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY, WEEKLY], now_ms=1000)
        weekly_id = _entry(mapping_file, "weekly-cleanup").installed_job_id
        scheduler.calls.clear()

        result = _run(scheduler, mapping_file, [DAILY], now_ms=2000)

        assert scheduler.updates() == [
            {"action": "update", "jobId": weekly_id, "patch": {"enabled": False}},
        ]
        entry = _entry(mapping_file, "weekly-cleanup")
        assert entry.orphaned is True
        assert entry.installed_job_id == weekly_id
        assert entry.updated_at_ms == 2000
        assert scheduler.store.get_job(weekly_id)["enabled"] is False
        assert result.orphans == [
            {"id": "weekly-cleanup", "action": "disabled-removed", "installedJobId": weekly_id},
        ]
        assert result.changed is True

    def test_orphan_sweep_runs_after_declared_jobs(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY, WEEKLY])
        scheduler.calls.clear()
        _run(scheduler, mapping_file, [dict(DAILY, message="changed")])
        patches = [u["patch"] for u in scheduler.updates()]
        assert "payload" in patches[0]
        assert patches[-1] == {"enabled": False}

    def test_already_disabled_orphan_only_marked(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY, dict(WEEKLY, enabledByDefault=False)])
        scheduler.calls.clear()
        result = _run(scheduler, mapping_file, [DAILY])
        assert scheduler.updates() == []
        assert _entry(mapping_file, "weekly-cleanup").orphaned is True
        assert result.orphans[0]["action"] == "orphaned"
        assert result.changed is False

    def test_re_added_job_reuses_installed_job(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY, WEEKLY])
        weekly_id = _entry(mapping_file, "weekly-cleanup").installed_job_id
        _run(scheduler, mapping_file, [DAILY])
        scheduler.calls.clear()

        result = _run(scheduler, mapping_file, [DAILY, WEEKLY])

        assert "add" not in scheduler.actions()
        entry = _entry(mapping_file, "weekly-cleanup")
        assert entry.installed_job_id == weekly_id
        assert entry.orphaned is False
        assert result.jobs[1]["action"] == "unchanged"
        assert result.orphans == []

    def test_hand_edited_key_in_scope_is_ignored(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        data = json.loads(mapping_file.read_text())
        data["entries"]["team:qa-team:marketing:a:b"] = {"installedJobId": "zzz", "specHash": "h"}
        mapping_file.write_text(json.dumps(data))

        result = _run(scheduler, mapping_file, [DAILY])

        assert result.orphans == []
        assert "team:qa-team:marketing:a:b" not in load_mapping(mapping_file).entries

    def test_other_scopes_untouched(self, scheduler, mapping_file):
        other_key = mapping_key(OWNER, "other-recipe", "daily-report")
        agent_key = mapping_key(Owner.agent("qa-team"), RECIPE, "weekly-cleanup")
        save_mapping(mapping_file, MappingState(entries={
            other_key: MappingEntry("elsewhere", "h", False, 1),
            agent_key: MappingEntry("agent-job", "h", False, 1),
        }))

        result = _run(scheduler, mapping_file, [DAILY])

        state = load_mapping(mapping_file)
        assert state.entries[other_key] == MappingEntry("elsewhere", "h", False, 1)
        assert state.entries[agent_key] == MappingEntry("agent-job", "h", False, 1)
        assert result.orphans == []


class TestErrors:
    def test_missing_id_aborts_without_saving(self, scheduler, mapping_file):
        client = SchedulerClient(lambda request: json.dumps({"ok": True}))
        jobs = normalize_declared_jobs([DAILY])
        with pytest.raises(MissingIdInResponse) as exc:
            reconcile_cron_jobs(jobs, OWNER, RECIPE, mapping_file, client, mode="on")
        assert exc.value.job_id == "daily-report"
        assert "daily-report" in str(exc.value)
        assert not mapping_file.exists()

    def test_failure_midway_persists_nothing(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY], now_ms=1000)
        before = mapping_file.read_bytes()
        scheduler.fail_on = lambda r: r["action"] == "add"

        with pytest.raises(SchedulerUnavailable) as exc:
            _run(scheduler, mapping_file, [dict(DAILY, message="v2"), WEEKLY], now_ms=2000)

        assert exc.value.job_id == "weekly-cleanup"
        assert mapping_file.read_bytes() == before

    def test_list_failure_has_no_job_id(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY])
        scheduler.fail_on = lambda r: r["action"] == "list"
        with pytest.raises(SchedulerUnavailable) as exc:
            _run(scheduler, mapping_file, [DAILY])
        assert exc.value.job_id is None

    def test_unrecognized_list_reply_does_not_duplicate(self, scheduler, mapping_file):
        _run(scheduler, mapping_file, [DAILY], now_ms=1000)
        before = mapping_file.read_bytes()
        scheduler.calls.clear()
        scheduler.rewrite = lambda request, response: (
            json.dumps({"result": json.loads(response)}) if request["action"] == "list" else response
        )

        with pytest.raises(MalformedResponse):
            _run(scheduler, mapping_file, [DAILY], now_ms=2000)

        assert scheduler.actions() == ["list"]
        assert len(scheduler.store.load_jobs()) == 1
        assert mapping_file.read_bytes() == before


class TestSpecHash:
    def test_insertion_order_independent(self):
        a = {"id": "j", "schedule": "0 9 * * *", "message": "m", "timezone": "UTC", "to": "@x"}
        b = {"to": "@x", "timezone": "UTC", "message": "m", "schedule": "0 9 * * *", "id": "j"}
        [ja] = normalize_declared_jobs([a])
        [jb] = normalize_declared_jobs([b])
        assert spec_hash(desired_spec(ja, OWNER)) == spec_hash(desired_spec(jb, OWNER))

    def test_blank_optional_equals_missing(self):
        [ja] = normalize_declared_jobs([{"id": "j", "schedule": "s", "message": "m", "channel": " "}])
        [jb] = normalize_declared_jobs([{"id": "j", "schedule": "s", "message": "m"}])
        assert spec_hash(desired_spec(ja, OWNER)) == spec_hash(desired_spec(jb, OWNER))

    def test_enabled_flag_not_hashed(self):
        [ja] = normalize_declared_jobs([dict(DAILY, enabledByDefault=True)])
        [jb] = normalize_declared_jobs([dict(DAILY, enabledByDefault=False)])
        assert spec_hash(desired_spec(ja, OWNER)) == spec_hash(desired_spec(jb, OWNER))

    def test_owner_changes_hash(self):
        [job] = normalize_declared_jobs([DAILY])
        assert spec_hash(desired_spec(job, OWNER)) != spec_hash(desired_spec(job, Owner.team("b-team")))


class TestSchedulerFields:
    def test_delivery_and_timezone(self):
        [job] = normalize_declared_jobs([dict(DAILY, timezone="UTC", channel="telegram", to="@ops",
                                              agentId="qa-team-lead")])
        fields = scheduler_fields(desired_spec(job, Owner.agent("qa-team-lead")))
        assert fields["schedule"] == {"kind": "cron", "expr": "0 9 * * *", "tz": "UTC"}
        assert fields["delivery"] == {"mode": "announce", "channel": "telegram", "to": "@ops"}
        assert fields["agentId"] == "qa-team-lead"
        assert fields["payload"] == {"kind": "agentTurn", "message": "send report"}
        assert "enabled" not in fields

    def test_no_delivery(self):
        [job] = normalize_declared_jobs([DAILY])
        assert scheduler_fields(desired_spec(job, OWNER))["delivery"] == {"mode": "none"}
