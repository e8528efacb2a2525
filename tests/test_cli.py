from unittest.mock import patch

import pytest

from marketbrief.cli import build_parser, main


def test_cli_parser_accepts_track_command():
    parser = build_parser()
    args = parser.parse_args(["track", "--user", "1", "AAPL", "--portfolio", "Core", "--percent", "12.5"])
    assert args.command == "track"
    assert args.user_id == 1
    assert args.symbol == "AAPL"
    assert args.portfolio == "Core"
    assert args.percent == 12.5
    assert args.importance == "normal"


def test_cli_parser_accepts_generate_command():
    parser = build_parser()
    args = parser.parse_args(["--config", "prod.yaml", "generate", "--user", "3", "--email"])
    assert args.command == "generate"
    assert args.config == "prod.yaml"
    assert args.user_id == 3
    assert args.email is True
    assert args.portfolio_id is None


def test_cli_parser_accepts_ingest_files():
    args = build_parser().parse_args(["ingest", "a.json", "b.json", "--no-match"])
    assert args.file == ["a.json", "b.json"]
    assert args.no_match is True


def test_cli_parser_accepts_critical_importance():
    args = build_parser().parse_args(["track", "--user", "1", "TSLA", "--importance", "critical"])
    assert args.importance == "critical"


def test_cli_parser_rejects_unknown_importance():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["track", "--user", "1", "AAPL", "--importance", "urgent"])


def test_cli_without_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage: marketbrief" in capsys.readouterr().out


def test_cli_add_user_and_track(tmp_path, capsys):
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"
    with patch.dict("os.environ", {"DATABASE_URL": db_url}), \
            patch("marketbrief.config.load_dotenv"):
        config = str(tmp_path / "missing.yaml")
        assert main(["--config", config, "add-user", "jane@example.com", "--free"]) == 0
        assert main(["--config", config, "track", "--user", "1", "msft", "--name", "Microsoft"]) == 0
        assert main(["--config", config, "track", "--user", "99", "AAPL"]) == 1

    out = capsys.readouterr().out
    assert "✓ User jane@example.com (id=1)" in out
    assert "✓ Tracking MSFT" in out
    assert "✗ Unknown user id 99" in out
