import importlib.util
from pathlib import Path

import pytest

from sessionauth.service.runtime import get_runtime

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "create_user.py"


@pytest.fixture
def script():
    module_spec = importlib.util.spec_from_file_location("create_user_script", _SCRIPT)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def test_creates_user_that_can_log_in(script):
    code = script.main(
        ["--email", "cli@example.com", "--password", "secret", "--full-name", "Cli User"]
    )
    assert code == 0
    runtime = get_runtime()
    user = runtime.store.get_user_by_email("cli@example.com")
    assert user.full_name == "Cli User"
    assert runtime.auth.verify_password(user.id, "secret")
    assert runtime.sessions.count_sessions(user.id) == 0


def test_updates_max_connections_for_existing_user(script):
    script.main(["--email", "cap@example.com", "--password", "secret", "--full-name", "Cap"])
    assert script.main(["--email", "cap@example.com", "--max-connections", "2"]) == 0
    assert get_runtime().store.get_user_by_email("cap@example.com").max_connections == 2


def test_dry_run_creates_nothing(script):
    result = script.create_user("dry@example.com", "secret", "Dry Run", dry_run=True)
    assert result["status"] == "dry_run"
    assert get_runtime().store.get_user_by_email("dry@example.com") is None


@pytest.mark.parametrize(
    "argv",
    [
        ["--email", "x@example.com", "--password", "1234", "--full-name", "Short"],
        ["--email", "x@example.com", "--password", "secret", "--full-name", "X"],
        ["--email", "x@example.com", "--max-connections", "0"],
        ["--email", "new@example.com"],
        ["--email", "not-an-email", "--password", "secret", "--full-name", "Bad Email"],
    ],
)
def test_invalid_arguments_fail(script, argv):
    assert script.main(argv) == 1


def test_invalid_email_creates_nothing(script):
    assert script.main(["--email", "no-at-sign", "--password", "secret", "--full-name", "Nope"]) == 1
    assert get_runtime().store.get_user_by_email("no-at-sign") is None


def test_email_is_normalized_like_the_api(script):
    script.main(["--email", " Mixed@Example.COM ", "--password", "secret", "--full-name", "Mixed"])
    assert get_runtime().store.get_user_by_email("mixed@example.com") is not None
