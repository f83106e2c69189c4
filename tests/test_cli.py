"""
Tests for the run_automation command line
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest

import run_automation
from clinic_automation.exceptions import NotFoundError
from clinic_automation.models import JobRunResult

from tests.fakes import NOW, TENANT


class TestParser:
    """Argument parsing"""

    def test_run_scope(self):
        args = run_automation.build_parser().parse_args(["run", "payment-reminders", "--tenant", TENANT])
        assert args.command == "run"
        assert args.job_id == "payment-reminders"
        assert args.tenant == TENANT
        assert not args.all_tenants

    def test_tenant_and_all_tenants_are_exclusive(self):
        with pytest.raises(SystemExit):
            run_automation.build_parser().parse_args(["run", "x", "--tenant", TENANT, "--all-tenants"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            run_automation.build_parser().parse_args([])


class TestCommands:
    """list and run"""

    @pytest.fixture(autouse=True)
    def quiet_logging(self, monkeypatch):
        # Log lines go to stdout, which these tests parse
        monkeypatch.setattr(run_automation, "configure_logging", lambda level: None)

    def test_list(self, capsys):
        assert run_automation.main(["list"]) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 17
        assert any(line.startswith("appointment-reminders") for line in lines)

    def test_run_prints_result(self, monkeypatch, capsys):
        engine = Mock()
        engine.run = AsyncMock(return_value=JobRunResult.empty("payment-reminders", TENANT, NOW))
        engine.stop = AsyncMock()
        monkeypatch.setattr(run_automation, "create_engine", lambda: engine)

        assert run_automation.main(["run", "payment-reminders", "--tenant", TENANT]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["job_id"] == "payment-reminders"
        engine.run.assert_awaited_once_with("payment-reminders", TENANT)
        engine.stop.assert_awaited_once()

    def test_unknown_job_exits_2(self, monkeypatch):
        engine = Mock()
        engine.run = AsyncMock(side_effect=NotFoundError("automation", "nope"))
        engine.stop = AsyncMock()
        monkeypatch.setattr(run_automation, "create_engine", lambda: engine)

        assert run_automation.main(["run", "nope"]) == 2
        engine.stop.assert_awaited_once()
