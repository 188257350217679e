import pytest

import manage_users
from trafficreport import user_store
from trafficreport.db import Database


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    for name in ("APP_ENV", "DB_HOST", "DB_USER", "DB_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(manage_users, "load_dotenv", lambda: None)
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SESSION_SECRET", "cli-secret")
    return Database(sqlite_path=tmp_path / "trafficreport.db")


def test_add_list_and_reset_password(cli_env, capsys):
    manage_users.main(["add", "Admin@Example.com", "first-pass", "--name", "Admin"])
    manage_users.main(["list"])
    out = capsys.readouterr().out
    assert "Created user:" in out
    assert "admin@example.com" in out

    manage_users.main(["set-password", "admin@example.com", "second-pass"])
    assert user_store.verify_credentials(cli_env, "admin@example.com", "first-pass") is None
    assert user_store.verify_credentials(cli_env, "admin@example.com", "second-pass") is not None


def test_empty_list_and_errors(cli_env, capsys):
    manage_users.main(["list"])
    assert "(no users)" in capsys.readouterr().out

    with pytest.raises(SystemExit, match="not found"):
        manage_users.main(["set-password", "ghost@example.com", "pw"])

    manage_users.main(["add", "a@example.com", "pw"])
    with pytest.raises(SystemExit, match="already exists"):
        manage_users.main(["add", "a@example.com", "pw"])
