"""备份检查测试：restic 输出解析、过期边界、密钥注入、占位主机与告警。"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from fleetsentry.collectors.backups import (
    NO_SNAPSHOTS,
    BackupStatusChecker,
    compute_status,
    parse_snapshots,
    parse_timestamp,
    restic_command,
)
from fleetsentry.core.exceptions import CommandFailure, ParseError
from fleetsentry.core.fleet_config import BackupConfig, FleetConfig
from fleetsentry.models.alert import AlertEvent
from fleetsentry.models.backup import BackupCheckResult, BackupTarget
from fleetsentry.services.alert_engine import AlertEngine
from tests.conftest import add_host, add_rule, fetch_model

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def snapshots_json(*times, hostname="nas", paths=("/srv", "/etc")):
    return json.dumps([
        {"time": t, "hostname": hostname, "paths": list(paths), "id": f"snap{i}"} for i, t in enumerate(times)
    ])


def make_checker(executor, session_factory, notifier, clock, alert_host=""):
    return BackupStatusChecker(
        executor, session_factory, AlertEngine(notifier, clock=clock), notifier,
        timeout_ms=30_000, alert_host=alert_host, clock=clock,
    )


class TestParseTimestamp:
    def test_nanoseconds_and_zulu(self):
        assert parse_timestamp("2026-01-01T03:04:05.123456789Z") == datetime(
            2026, 1, 1, 3, 4, 5, 123456, tzinfo=timezone.utc
        )

    def test_offset(self):
        value = parse_timestamp("2026-01-01T10:00:00.5+02:00")
        assert value == datetime(2026, 1, 1, 8, 0, 0, 500000, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp("2026-01-01T10:00:00") == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)

    @pytest.mark.parametrize("text", [None, "", "yesterday", "2026-13-01T00:00:00Z", "2026-01-01T00:00:00 bogus"])
    def test_invalid(self, text):
        assert parse_timestamp(text) is None


class TestComputeStatus:
    def test_exactly_at_threshold_is_ok(self):
        assert compute_status(NOW - timedelta(hours=24), 24, NOW) == "ok"

    def test_one_second_past_threshold_is_stale(self):
        assert compute_status(NOW - timedelta(hours=24, seconds=1), 24, NOW) == "stale"

    def test_missing_is_error(self):
        assert compute_status(None, 24, NOW) == "error"

    def test_unparsable_is_error(self):
        assert compute_status("not a time", 24, NOW) == "error"

    def test_accepts_restic_text(self):
        assert compute_status("2026-01-01T11:00:00.000000001Z", 24, NOW) == "ok"


class TestParseSnapshots:
    def test_uses_newest_entry(self):
        out = snapshots_json("2025-12-30T00:00:00Z", "2025-12-31T23:00:00Z")
        assert parse_snapshots(out) == ("2025-12-31T23:00:00Z", "host=nas paths=/srv, /etc")

    def test_newest_entry_regardless_of_order(self):
        out = json.dumps([
            {"time": "2026-01-02T00:00:00Z", "hostname": "web", "paths": ["/srv"]},
            {"time": "2025-12-01T00:00:00Z", "hostname": "db", "paths": ["/var/lib"]},
            {"time": "2026-01-01T23:30:00-02:00", "hostname": "nas", "paths": ["/data"]},
        ])
        assert parse_snapshots(out) == ("2026-01-01T23:30:00-02:00", "host=nas paths=/data")

    def test_unparsable_times_lose_to_parsable(self):
        out = json.dumps([{"time": "garbage", "hostname": "a"}, {"time": "2025-12-01T00:00:00Z", "hostname": "b"}])
        assert parse_snapshots(out) == ("2025-12-01T00:00:00Z", "host=b paths=")

    def test_empty_repository(self):
        assert parse_snapshots("[]") == (None, NO_SNAPSHOTS)
        assert parse_snapshots("null") == (None, NO_SNAPSHOTS)

    def test_missing_hostname(self):
        out = json.dumps([{"time": "2026-01-01T00:00:00Z"}])
        assert parse_snapshots(out) == ("2026-01-01T00:00:00Z", "host=unknown paths=")

    @pytest.mark.parametrize("stdout", ["not json", '{"time": "x"}', "[1, 2]"])
    def test_malformed(self, stdout):
        with pytest.raises(ParseError):
            parse_snapshots(stdout)


class TestBackupStatusChecker:
    @pytest.mark.asyncio
    async def test_ok_check_records_state_and_history(self, executor, session_factory, notifier, clock):
        await add_host(session_factory, "local")
        executor.on("*", "restic snapshots", snapshots_json("2026-01-01T06:00:00.123456789Z"))
        fleet = FleetConfig(backups=[BackupConfig(name="nightly", repo="/srv/restic", stale_hours=24)])

        results = await make_checker(executor, session_factory, notifier, clock).check_all(fleet)

        assert [(r.name, r.status) for r in results] == [("nightly", "ok")]
        target = (await fetch_model(session_factory, BackupTarget))[0]
        assert target.status == "ok"
        assert target.details == "host=nas paths=/srv, /etc"
        history = await fetch_model(session_factory, BackupCheckResult)
        assert [(h.backup_name, h.status, h.backup_id) for h in history] == [("nightly", "ok", target.id)]
        event = notifier.of("backup")[0]
        assert event["name"] == "nightly"
        assert event["status"] == "ok"
        assert event["last_success"].startswith("2026-01-01T06:00:00.123456")
        assert executor.calls[0]["command"] == restic_command("/srv/restic")
        assert executor.calls[0]["timeout_ms"] == 30_000

    @pytest.mark.asyncio
    async def test_stale_fires_alert_on_placeholder_host(self, executor, session_factory, notifier, clock):
        local = await add_host(session_factory, "local")
        await add_rule(session_factory, "backup_stale", "==", 1)
        executor.on("*", "restic snapshots", snapshots_json("2025-12-30T00:00:00Z"))
        fleet = FleetConfig(backups=[BackupConfig(name="nightly", repo="/srv/restic", stale_hours=24)])

        results = await make_checker(executor, session_factory, notifier, clock).check_all(fleet)

        assert results[0].status == "stale"
        events = await fetch_model(session_factory, AlertEvent)
        assert len(events) == 1
        assert (events[0].host_id, events[0].entity) == (local.id, "nightly")
        assert events[0].message == 'Backup "nightly" is stale: last success 60.0h ago (threshold: 24h)'

    @pytest.mark.asyncio
    async def test_recovery_resolves_backup_alert(self, executor, session_factory, notifier, clock):
        await add_host(session_factory, "local")
        await add_rule(session_factory, "backup_stale", "==", 1)
        fleet = FleetConfig(backups=[BackupConfig(name="nightly", repo="/srv/restic")])
        checker = make_checker(executor, session_factory, notifier, clock)

        executor.on("*", "restic snapshots", CommandFailure("repository does not exist", host="local", exit_code=1))
        await checker.check_all(fleet)
        executor.on("*", "restic snapshots", snapshots_json("2026-01-01T11:00:00Z"))
        await checker.check_all(fleet)

        events = await fetch_model(session_factory, AlertEvent)
        assert len(events) == 1
        assert events[0].resolution == "auto"
        statuses = [h.status for h in await fetch_model(session_factory, BackupCheckResult)]
        assert statuses == ["error", "ok"]

    @pytest.mark.asyncio
    async def test_empty_repository_is_error_without_last_success(self, executor, session_factory, notifier, clock):
        executor.on("*", "restic snapshots", "[]")
        fleet = FleetConfig(backups=[BackupConfig(name="fresh", repo="/srv/new")])

        result = (await make_checker(executor, session_factory, notifier, clock).check_all(fleet))[0]

        assert result.status == "error"
        assert result.last_success is None
        assert result.details == NO_SNAPSHOTS

    @pytest.mark.asyncio
    async def test_one_target_failure_does_not_stop_others(self, executor, session_factory, notifier, clock):
        executor.on("*", "restic snapshots", snapshots_json("2026-01-01T10:00:00Z"))
        executor.on("*", restic_command("/broken"), "garbage{")
        fleet = FleetConfig(backups=[
            BackupConfig(name="broken", repo="/broken"),
            BackupConfig(name="fine", repo="/fine"),
            BackupConfig(name="legacy", type="borg", repo="/borg"),
        ])

        results = await make_checker(executor, session_factory, notifier, clock).check_all(fleet)

        assert [(r.name, r.status) for r in results] == [("broken", "error"), ("fine", "ok")]
        assert "Failed to parse restic output" in results[0].details
        assert [c["command"] for c in executor.calls] == [restic_command("/broken"), restic_command("/fine")]

    @pytest.mark.asyncio
    async def test_runs_on_check_host_with_secrets(self, executor, session_factory, notifier, clock, monkeypatch):
        await add_host(session_factory, "local")
        await add_host(session_factory, "nas", kind="remote")
        monkeypatch.setenv("RESTIC_PASSWORD_OFF_SITE", "s3cret")
        executor.on("nas", "restic snapshots", snapshots_json("2026-01-01T10:00:00Z"))
        fleet = FleetConfig(backups=[BackupConfig(
            name="off-site", repo="s3:bucket/restic", check_host="nas",
            aws_access_key_id="AKIA", aws_secret_access_key="secret-key",
        )])

        await make_checker(executor, session_factory, notifier, clock).check_all(fleet)

        call = executor.calls[0]
        assert call["host"] == "nas"
        assert call["env"] == {
            "RESTIC_PASSWORD": "s3cret",
            "AWS_ACCESS_KEY_ID": "AKIA",
            "AWS_SECRET_ACCESS_KEY": "secret-key",
        }
        assert "s3cret" not in call["command"]

    @pytest.mark.asyncio
    async def test_password_file_fallback(self, executor, session_factory, notifier, clock, monkeypatch):
        monkeypatch.delenv("RESTIC_PASSWORD_NIGHTLY", raising=False)
        executor.on("*", "restic snapshots", "[]")
        fleet = FleetConfig(backups=[BackupConfig(name="nightly", repo="/r", password_file="/etc/restic.pass")])

        await make_checker(executor, session_factory, notifier, clock).check_all(fleet)

        assert executor.calls[0]["env"] == {"RESTIC_PASSWORD_FILE": "/etc/restic.pass"}

    @pytest.mark.asyncio
    async def test_placeholder_host_selection(self, session_factory, executor, notifier, clock):
        checker = make_checker(executor, session_factory, notifier, clock)
        async with session_factory() as db:
            assert (await checker.placeholder_host(db)).id == 0

        await add_host(session_factory, "far", kind="remote")
        first_local = await add_host(session_factory, "local-a")
        await add_host(session_factory, "local-b")
        async with session_factory() as db:
            assert (await checker.placeholder_host(db)).id == first_local.id

        named = make_checker(executor, session_factory, notifier, clock, alert_host="far")
        async with session_factory() as db:
            assert (await named.placeholder_host(db)).name == "far"

    @pytest.mark.asyncio
    async def test_existing_target_updated_in_place(self, executor, session_factory, notifier, clock):
        async with session_factory() as db:
            db.add(BackupTarget(name="nightly", stale_hours=24))
            await db.commit()
        executor.on("*", "restic snapshots", snapshots_json("2025-12-31T00:00:00Z"))
        fleet = FleetConfig(backups=[BackupConfig(name="nightly", repo="/r", stale_hours=48)])

        results = await make_checker(executor, session_factory, notifier, clock).check_all(fleet)

        assert results[0].status == "ok"
        targets = await fetch_model(session_factory, BackupTarget)
        assert len(targets) == 1
        assert targets[0].stale_hours == 48

    @pytest.mark.asyncio
    async def test_unknown_check_host_is_error(self, executor, session_factory, notifier, clock):
        fleet = FleetConfig(backups=[BackupConfig(name="nightly", repo="/r", check_host="gone")])

        result = (await make_checker(executor, session_factory, notifier, clock).check_all(fleet))[0]

        assert result.status == "error"
        assert "gone" in result.details
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_out_of_order_groups_use_newest_snapshot(self, executor, session_factory, notifier, clock):
        clock.now = datetime(2026, 1, 2, 1, 0, tzinfo=timezone.utc)
        executor.on("*", "restic snapshots", json.dumps([
            {"time": "2026-01-02T00:00:00Z", "hostname": "web", "paths": ["/srv"]},
            {"time": "2025-12-01T00:00:00Z", "hostname": "db", "paths": ["/var/lib"]},
        ]))
        fleet = FleetConfig(backups=[BackupConfig(name="nightly", repo="/r", stale_hours=24)])

        result = (await make_checker(executor, session_factory, notifier, clock).check_all(fleet))[0]

        assert result.status == "ok"
        assert result.last_success == datetime(2026, 1, 2, tzinfo=timezone.utc)
        assert result.details == "host=web paths=/srv"
