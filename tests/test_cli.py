import json

from sitequeue import cli, config
from sitequeue.db import SqliteLedger


def test_seed_and_stats(tmp_path, capsys):
    db = str(tmp_path / "cli.db")
    assert cli.main(["--db", db, "seed-site", "--name", "Ikeja", "--lat", "6.6018", "--lon", "3.3515",
                     "--radius", "500"]) == 0
    assert "Ikeja" in capsys.readouterr().out

    assert cli.main(["--db", db, "stats", "--day", "2026-03-02"]) == 0
    body = json.loads(capsys.readouterr().out)
    assert body["day"] == "2026-03-02"
    assert body["sites"][0]["total"] == 0


def test_set_radius(tmp_path, capsys):
    db = str(tmp_path / "cli.db")
    cli.main(["--db", db, "seed-site"])
    site = SqliteLedger(db).active_site()
    assert cli.main(["--db", db, "set-radius", "--site", site.id, "--radius", "800"]) == 0
    assert SqliteLedger(db).get_site(site.id).radius_m == 800
    assert cli.main(["--db", db, "set-radius", "--site", "nope", "--radius", "800"]) == 1


def test_verify_unknown(tmp_path, capsys):
    db = str(tmp_path / "cli.db")
    assert cli.main(["--db", db, "verify", "--ref", "missing"]) == 1
    assert json.loads(capsys.readouterr().out)["error"] == "NOT_FOUND"


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1


def test_init_db_reports_failed_config_checks(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr(config, "ALLOCATION_MAX_ATTEMPTS", 0)
    assert cli.main(["--db", str(tmp_path / "cli.db"), "init-db"]) == 0
    captured = capsys.readouterr()
    assert "Schema ready" in captured.out
    assert "config check failed: max_attempts" in captured.err
