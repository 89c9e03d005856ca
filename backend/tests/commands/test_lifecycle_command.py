"""
Tests for the lifecycle management command.
"""

import json
from unittest.mock import MagicMock, patch

from ambulance.commands.lifecycle import build_parser, main


class TestLifecycleCommand:
    def test_parser_accepts_force(self):
        args = build_parser().parse_args(["remind", "--force"])

        assert args.command == "remind"
        assert args.force is True
        assert args.async_mode is False

    @patch("ambulance.commands.lifecycle.AutoCancellationService")
    @patch("ambulance.commands.lifecycle.SessionLocal")
    def test_sweep_prints_json_and_exits_zero(self, mock_session_local, mock_service, capsys):
        mock_db = MagicMock()
        mock_session_local.return_value = mock_db
        mock_service.return_value.run.return_value = {"success": True, "cancelled_count": 3}

        exit_code = main(["sweep"])

        assert exit_code == 0
        assert json.loads(capsys.readouterr().out)["cancelled_count"] == 3
        mock_db.close.assert_called_once()

    @patch("ambulance.commands.lifecycle.PaymentReminderService")
    @patch("ambulance.commands.lifecycle.SessionLocal")
    def test_remind_failure_exits_one(self, mock_session_local, mock_service, capsys):
        mock_session_local.return_value = MagicMock()
        mock_service.return_value.run.return_value = {"success": False, "error": "db down"}

        exit_code = main(["remind", "--force"])

        assert exit_code == 1
        mock_service.return_value.run.assert_called_once_with(force=True)

    def test_missing_subcommand_prints_help(self, capsys):
        assert main([]) == 1
        assert "sweep" in capsys.readouterr().out
