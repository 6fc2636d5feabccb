import pytest

from storefront import cli


def test_parser_knows_maintenance_commands() -> None:
    parser = cli._build_parser()
    retry = parser.parse_args(["retry-side-effects", "--max-attempts", "3"])
    assert retry.command == "retry-side-effects"
    assert retry.max_attempts == 3

    warn = parser.parse_args(["warn-expiring-coupons"])
    assert warn.days == 7


def test_negative_days_are_rejected() -> None:
    args = cli._build_parser().parse_args(["warn-expiring-coupons", "--days", "-1"])
    with pytest.raises(SystemExit):
        cli._run_cli_command(args)


def test_unknown_command_is_not_handled() -> None:
    assert cli._run_cli_command(cli._build_parser().parse_args([])) is False


def test_commands_dispatch(monkeypatch) -> None:
    calls = []

    async def fake_retry(max_attempts=None):
        calls.append(("retry", max_attempts))

    async def fake_warn(days):
        calls.append(("warn", days))

    monkeypatch.setattr(cli, "retry_side_effects", fake_retry)
    monkeypatch.setattr(cli, "warn_expiring_coupons", fake_warn)
    parser = cli._build_parser()
    assert cli._run_cli_command(parser.parse_args(["retry-side-effects"])) is True
    assert cli._run_cli_command(parser.parse_args(["warn-expiring-coupons", "--days", "2"])) is True
    assert calls == [("retry", None), ("warn", 2)]
