"""Participant token registry.

Participants authenticate with an opaque token sent in the
``X-Participant-Token`` header.  Tokens come from two sources, merged with
the file taking precedence:

- ``PARTICIPANT_TOKENS`` env var: ``token:participant[:email],token:participant[:email]``
- ``TOKENS_PATH`` JSON file: ``{token: participant}`` or
  ``{token: {"participant": ..., "name": ..., "email": ...}}``
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from errors import Unauthorized

logger = logging.getLogger("studyforms.participants")


@dataclass(frozen=True)
class Participant:
    id: str
    name: str = ""
    email: str = ""


def _parse_env_tokens(env_value: str) -> Dict[str, Participant]:
    result: Dict[str, Participant] = {}
    parts = [p.strip() for p in env_value.split(",") if p.strip()]
    for part in parts:
        fields = part.split(":")
        if len(fields) >= 2:
            token = fields[0].strip()
            pid = fields[1].strip()
            email = fields[2].strip() if len(fields) >= 3 else ""
            if token and pid:
                result[token] = Participant(id=pid, name=pid, email=email)
    return result


def _parse_file_entry(val: Any) -> Optional[Participant]:
    if isinstance(val, str):
        return Participant(id=val, name=val) if val else None
    if isinstance(val, dict):
        pid = str(val.get("participant", val.get("id", "")))
        if not pid:
            return None
        return Participant(id=pid, name=str(val.get("name") or pid), email=str(val.get("email") or ""))
    return None


def load_participants(env_value: str = "", path: str = "") -> Dict[str, Participant]:
    result = _parse_env_tokens(env_value) if env_value else {}
    if path and os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.exception("Failed to read tokens file at %s", path)
            return result
        if isinstance(data, dict):
            for token, val in data.items():
                participant = _parse_file_entry(val)
                if isinstance(token, str) and participant is not None:
                    result[token] = participant
    return result


def require_participant(registry: Dict[str, Participant], token: Optional[str]) -> Participant:
    if not token:
        raise Unauthorized("Missing participant token")
    participant = registry.get(token)
    if participant is None:
        raise Unauthorized("Invalid participant token")
    return participant
