import json
import logging

import pytest

from permagate import PushEntry, RepoRegistration
from permagate.cli import main


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def run(capsys, *argv):
    code = main(["--log-level", "ERROR", *argv])
    return code, capsys.readouterr()


def test_init_db_and_stats(tmp_path, capsys):
    db = str(tmp_path / "cli.db")

    code, out = run(capsys, "--db", db, "init-db")
    assert code == 0
    assert json.loads(out.out) == {"initialized": db}

    code, out = run(capsys, "--db", db, "stats")
    assert code == 0
    assert json.loads(out.out)["payments_count"] == 0


def test_lookup_commands(engine, pay, capsys):
    pay("tx1")
    repo = engine.repos.register(RepoRegistration(name="acme", owner="alice", payment_tx="tx1"))
    db = engine.config.db_path

    code, out = run(capsys, "--db", db, "payment", "tx1")
    assert code == 0
    payment = json.loads(out.out)["payment"]
    assert payment["tx_hash"] == "tx1"
    assert payment["consumed_at"] is not None

    code, out = run(capsys, "--db", db, "repo", "alice", "acme")
    assert code == 0
    assert json.loads(out.out)["repo"]["id"] == repo.id


def test_missing_records_exit_nonzero(tmp_path, capsys):
    db = str(tmp_path / "cli.db")

    code, out = run(capsys, "--db", db, "payment", "nope")
    assert code == 1
    assert '"error": "payment_not_found"' in out.err

    code, out = run(capsys, "--db", db, "approval-status", "no-repo", "push-1")
    assert code == 1
    assert '"error": "repo_not_found"' in out.err


def test_logs(engine, capsys):
    engine.pushes.record_push(PushEntry(subject_id="ar-1", owner="alice", repo="acme"))

    code, out = run(capsys, "--db", engine.config.db_path, "logs", "--owner", "alice")
    assert code == 0
    assert [entry["tx_id"] for entry in json.loads(out.out)["logs"]] == ["ar-1"]


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "permagate" in capsys.readouterr().out
