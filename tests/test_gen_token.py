import os
import stat

import pytest

from errors import Unauthorized
from gen_token import issue_token, load_env_file, normalize_tokens, parse_env_lines, read_tokens, save_tokens
from participants import load_participants, require_participant


def test_issue_token_is_stable_until_rotated():
    mapping = {}

    first = issue_token(mapping, "p-1", name="Ada", email="ada@example.org")
    again = issue_token(mapping, "p-1", email="new@example.org")
    rotated = issue_token(mapping, "p-1", rotate=True)

    assert first == again
    assert rotated != first
    assert list(mapping) == [rotated]
    assert mapping[rotated] == {"participant": "p-1", "name": "Ada", "email": "new@example.org"}


def test_normalize_accepts_legacy_entries():
    mapping = normalize_tokens({"a": "p-a", "b": {"id": "p-b", "email": "b@x"}, "c": {"name": "no id"}})

    assert mapping == {
        "a": {"participant": "p-a", "name": "p-a", "email": ""},
        "b": {"participant": "p-b", "name": "p-b", "email": "b@x"},
    }


def test_tokens_file_is_readable_by_the_registry(tmp_path):
    path = str(tmp_path / "tokens.json")
    mapping = {}
    token = issue_token(mapping, "p-1", name="Ada")
    save_tokens(path, mapping)

    assert read_tokens(path) == mapping
    assert os.listdir(tmp_path) == ["tokens.json"]
    registry = load_participants("env-tok:p-env:env@x", path)
    assert require_participant(registry, token).name == "Ada"
    assert require_participant(registry, "env-tok").email == "env@x"
    with pytest.raises(Unauthorized):
        require_participant(registry, None)
    with pytest.raises(Unauthorized):
        require_participant(registry, "unknown")


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_saved_tokens_are_private_to_the_owner(tmp_path):
    path = tmp_path / "tokens.json"

    save_tokens(str(path), {"t": {"participant": "p", "name": "p", "email": ""}})

    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_corrupt_tokens_file_is_refused_by_the_cli_and_ignored_by_the_server(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text("{broken")

    with pytest.raises(ValueError):
        read_tokens(str(path))
    assert load_participants("", str(path)) == {}
    assert read_tokens(str(tmp_path / "missing.json")) == {}


def test_parse_env_lines():
    lines = ["# comment", "", "A=1", 'B="two words"', "export C='3'", "no equals", "=orphan"]

    assert parse_env_lines(lines) == {"A": "1", "B": "two words", "C": "3"}


def test_load_env_file_does_not_override(tmp_path, monkeypatch):
    env = tmp_path / "studyforms.env"
    env.write_text('# comment\nSTUDYFORMS_TEST_PATH="/tmp/t.json"\nSTUDYFORMS_TEST_HOST=mail\n')
    # setenv first so monkeypatch removes the variable again afterwards
    monkeypatch.setenv("STUDYFORMS_TEST_PATH", "")
    monkeypatch.delenv("STUDYFORMS_TEST_PATH")
    monkeypatch.setenv("STUDYFORMS_TEST_HOST", "keep")

    applied = load_env_file(str(env))

    assert applied == {"STUDYFORMS_TEST_PATH": "/tmp/t.json"}
    assert os.environ["STUDYFORMS_TEST_PATH"] == "/tmp/t.json"
    assert os.environ["STUDYFORMS_TEST_HOST"] == "keep"
    assert load_env_file(str(tmp_path / "absent.env")) == {}
