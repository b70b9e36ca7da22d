"""Tests for the operator CLI in main.py.

Each test points DATABASE_URL at its own named in-memory database. A store is
held open for the duration of the test so the database outlives the short-lived
stores each command opens and closes.
"""

import uuid

import pytest

import main as cli
from auth.models import Role
from auth.store import UserStore
from cmdb.store import CMDBStore


@pytest.fixture
def directory(settings_env):
    url = f"sqlite:///file:cli_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    settings_env(DATABASE_URL=url)
    keeper = UserStore(url, create=True)
    yield keeper
    keeper.close()


def test_init_db(directory, capsys):
    assert cli.main(["init-db"]) == 0
    assert "Schema ready" in capsys.readouterr().out
    cmdb = CMDBStore(create=False)
    try:
        assert cmdb.list_ci_types()
    finally:
        cmdb.close()


def test_add_user(directory, capsys):
    assert cli.main(["add-user", "Ada@Example.com", "Agent", "--display-name", "Ada Lovelace"]) == 0
    assert "Added ada@example.com as agent" in capsys.readouterr().out
    user = directory.get_by_email("ada@example.com")
    assert user.role is Role.AGENT
    assert user.display_name == "Ada Lovelace"
    assert user.created_by == "cli"


def test_add_user_display_name_defaults_to_email(directory):
    assert cli.main(["add-user", "bob@example.com", "user"]) == 0
    assert directory.get_by_email("bob@example.com").display_name == "bob@example.com"


def test_add_user_duplicate(directory, capsys):
    assert cli.main(["add-user", "ada@example.com", "user"]) == 0
    assert cli.main(["add-user", "ADA@example.com", "admin"]) == 1
    assert "already exists" in capsys.readouterr().err
    assert directory.get_role_for("ada@example.com") is Role.USER


@pytest.mark.parametrize("argv", [["add-user", "not-an-email", "user"], ["add-user", "ada@example.com", "root"]])
def test_add_user_invalid(directory, capsys, argv):
    assert cli.main(argv) == 1
    assert "[!]" in capsys.readouterr().err
    assert directory.list_users() == []


def test_list_users(directory, capsys):
    cli.main(["add-user", "zed@example.com", "admin"])
    cli.main(["add-user", "amy@example.com", "user"])
    capsys.readouterr()

    assert cli.main(["list-users"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split()[:2] == ["amy@example.com", "user"]
    assert lines[1].split()[:2] == ["zed@example.com", "admin"]


def test_list_users_empty(directory, capsys):
    assert cli.main(["list-users"]) == 0
    assert "No active users." in capsys.readouterr().out


def test_no_command(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()
