#!/usr/bin/env python3
"""Issue participant tokens into the tokens file read by the server.

    python3 gen_token.py --participant p-017 --name "P17" --email p17@example.org

The token is printed on stdout; hand it to the participant, who sends it in
the ``X-Participant-Token`` header.  Run ``POST /reload-tokens`` afterwards.
"""

import argparse
import json
import os
import sys
import tempfile
from secrets import token_urlsafe
from typing import Any, Dict, Iterable

DEFAULT_ENV_FILE = "/etc/studyforms.env"


def parse_env_lines(lines: Iterable[str]) -> Dict[str, str]:
    """``KEY=value`` pairs of an env file; comments, blanks and surrounding quotes are dropped."""
    values: Dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] in ("'", '"') and value[-1] == value[0]:
            value = value[1:-1]
        values[key] = value
    return values


def load_env_file(env_path: str = DEFAULT_ENV_FILE) -> Dict[str, str]:
    """Export the file's variables that the environment does not set yet.

    Returns the variables that were applied.
    """
    try:
        with open(env_path, "r", encoding="utf-8") as f:
            values = parse_env_lines(f)
    except FileNotFoundError:
        return {}
    except OSError as exc:
        print(f"Warning: Could not load {env_path}: {exc}", file=sys.stderr)
        return {}
    applied = {k: v for k, v in values.items() if k not in os.environ}
    os.environ.update(applied)
    return applied


def normalize_tokens(mapping: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
    """Bring every entry to ``{token: {participant, name, email}}``."""
    normalized: Dict[str, Dict[str, str]] = {}
    for tkn, val in mapping.items():
        if isinstance(val, str):
            normalized[tkn] = {"participant": val, "name": val, "email": ""}
        elif isinstance(val, dict):
            pid = str(val.get("participant", val.get("id", "")))
            if pid:
                normalized[tkn] = {
                    "participant": pid,
                    "name": str(val.get("name") or pid),
                    "email": str(val.get("email") or ""),
                }
    return normalized


def read_tokens(path: str) -> Dict[str, Dict[str, str]]:
    """Tokens file as a normalized mapping.

    A missing file is empty.  A file that is not a JSON object raises
    ``ValueError`` so the caller never overwrites it with a fresh mapping.
    """
    if not os.path.isfile(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path} is not valid JSON: {exc}")
    if not isinstance(data, dict):
        raise ValueError(f"{path} must hold a JSON object")
    return normalize_tokens(data)


def save_tokens(path: str, mapping: Dict[str, Dict[str, str]]) -> None:
    """Replace the tokens file in one step."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    # mkstemp creates the file 0600, so tokens are never readable by others
    fd, tmp = tempfile.mkstemp(prefix=".tokens.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(mapping, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
        os.replace(tmp, path)
    except (OSError, TypeError, ValueError):
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def issue_token(mapping: Dict[str, Dict[str, str]], participant: str, name: str = "", email: str = "",
                rotate: bool = False, length: int = 24) -> str:
    """Return the participant's token, creating one (or a fresh one when rotating).

    ``mapping`` is updated in place.  Name and email are refreshed when given.
    """
    existing = next((t for t, info in mapping.items() if info.get("participant") == participant), None)
    if existing and not rotate:
        info = mapping[existing]
        if name:
            info["name"] = name
        if email:
            info["email"] = email
        return existing

    token = token_urlsafe(length)
    while token in mapping:
        token = token_urlsafe(length)

    info = {"participant": participant, "name": name or participant, "email": email}
    if existing:
        old = mapping.pop(existing)
        info["name"] = name or old.get("name", participant)
        info["email"] = email or old.get("email", "")
    mapping[token] = info
    return token


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue or rotate a participant token")
    parser.add_argument("--participant", required=True, help="Stable participant id")
    parser.add_argument("--name", default="", help="Display name shown in researcher emails")
    parser.add_argument("--email", default="", help="Participant email address")
    parser.add_argument("--tokens-path", default="", help="Path to tokens JSON mapping (default: $TOKENS_PATH)")
    parser.add_argument("--length", type=int, default=24, help="Token length parameter for token_urlsafe (default 24)")
    parser.add_argument("--rotate", action="store_true", help="Rotate token even if the participant already has one")
    parser.add_argument("--env-file", default=DEFAULT_ENV_FILE, help="Path to environment file")
    args = parser.parse_args()

    load_env_file(args.env_file)
    tokens_path = args.tokens_path or os.getenv(
        "TOKENS_PATH", os.path.join(os.path.dirname(os.path.abspath(__file__)), "tokens.json"))

    try:
        mapping = read_tokens(tokens_path)
    except (OSError, ValueError) as exc:
        print(f"Cannot read tokens file: {exc}", file=sys.stderr)
        sys.exit(1)

    token = issue_token(mapping, args.participant, args.name, args.email, rotate=args.rotate, length=args.length)

    try:
        save_tokens(tokens_path, mapping)
    except OSError as exc:
        print(f"Failed to write tokens file: {exc}", file=sys.stderr)
        sys.exit(1)

    print(token)


if __name__ == "__main__":
    main()
