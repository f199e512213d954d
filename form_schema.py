"""Form definitions and the field descriptors of digital questionnaires.

Forms are described in a JSON file with a top-level ``"forms"`` list.  Each
entry looks like::

    {
      "id": "f-consent",
      "title": "Baseline questionnaire",
      "section_number": 1,
      "is_active": true,
      "kind": "digital",
      "position": 1,
      "form_schema": {
        "fields": [{"type": "radio", "name": "q1", "label": "...", "options": [...]}],
        "answerKey": {"q1": "B"}
      }
    }

``kind`` is either ``"digital"`` or ``"attachment"`` (``"pdf"`` is accepted as
an alias).  Field descriptors form a closed set of variants; anything else is
rejected when the file is loaded.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple, Union


class FormSchemaError(ValueError):
    """Raised when a form definition is malformed."""


class Modality(str, Enum):
    DIGITAL = "digital"
    ATTACHMENT = "attachment"


_MODALITY_ALIASES = {
    "digital": Modality.DIGITAL,
    "attachment": Modality.ATTACHMENT,
    "pdf": Modality.ATTACHMENT,
}


@dataclass(frozen=True)
class Option:
    value: str
    label: str


@dataclass(frozen=True)
class TextField:
    name: str
    label: str
    required: bool = False
    placeholder: str = ""
    multiline: bool = False


@dataclass(frozen=True)
class RadioField:
    name: str
    label: str
    options: Tuple[Option, ...]
    required: bool = False


@dataclass(frozen=True)
class ScaleField:
    name: str
    label: str
    min: int = 1
    max: int = 5
    step: int = 1
    min_label: str = ""
    max_label: str = ""
    required: bool = False


@dataclass(frozen=True)
class AudioChoiceField:
    name: str
    label: str
    options: Tuple[Option, ...]
    audio_url: str = ""
    required: bool = False


Field = Union[TextField, RadioField, ScaleField, AudioChoiceField]


@dataclass(frozen=True)
class Form:
    id: str
    title: str
    section_number: int
    modality: Modality
    is_active: bool = True
    description: str = ""
    position: int = 0
    fields: Tuple[Field, ...] = ()
    answer_key: Dict[str, str] = field(default_factory=dict)

    @property
    def is_graded(self) -> bool:
        return self.modality is Modality.DIGITAL and bool(self.answer_key)


def _parse_options(name: str, raw: Any) -> Tuple[Option, ...]:
    if not isinstance(raw, list) or not raw:
        raise FormSchemaError(f"Field '{name}' needs a non-empty 'options' list")
    options: List[Option] = []
    for item in raw:
        # Plain strings are shorthand for value == label
        if isinstance(item, str):
            options.append(Option(value=item, label=item))
        elif isinstance(item, dict) and "value" in item:
            value = str(item["value"])
            options.append(Option(value=value, label=str(item.get("label", value))))
        else:
            raise FormSchemaError(f"Field '{name}' has an invalid option: {item!r}")
    return tuple(options)


def parse_field(raw: Dict[str, Any]) -> Field:
    """Build one field descriptor, validating the attributes of its variant."""
    if not isinstance(raw, dict):
        raise FormSchemaError(f"Field descriptor must be an object, got {raw!r}")
    kind = raw.get("type")
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise FormSchemaError(f"Field descriptor is missing a 'name': {raw!r}")
    label = str(raw.get("label", name))
    required = bool(raw.get("required", False))

    if kind in ("text", "textarea"):
        return TextField(
            name=name,
            label=label,
            required=required,
            placeholder=str(raw.get("placeholder", "")),
            multiline=kind == "textarea" or bool(raw.get("multiline", False)),
        )
    if kind == "radio":
        return RadioField(name=name, label=label, required=required,
                          options=_parse_options(name, raw.get("options")))
    if kind == "scale":
        try:
            lo = int(raw.get("min", 1))
            hi = int(raw.get("max", 5))
            step = int(raw.get("step", 1))
        except (TypeError, ValueError):
            raise FormSchemaError(f"Scale field '{name}' has non-integer bounds")
        if lo >= hi or step <= 0:
            raise FormSchemaError(f"Scale field '{name}' has an empty range")
        return ScaleField(
            name=name,
            label=label,
            required=required,
            min=lo,
            max=hi,
            step=step,
            min_label=str(raw.get("minLabel", raw.get("min_label", ""))),
            max_label=str(raw.get("maxLabel", raw.get("max_label", ""))),
        )
    if kind == "mcq":
        return AudioChoiceField(
            name=name,
            label=label,
            required=required,
            options=_parse_options(name, raw.get("options")),
            audio_url=str(raw.get("audioUrl", raw.get("audio_url", ""))),
        )
    raise FormSchemaError(f"Unknown field type {kind!r} for field '{name}'")


def _parse_answer_key(raw: Any, field_names: List[str]) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise FormSchemaError("'answerKey' must be an object")
    key: Dict[str, str] = {}
    for qkey, expected in raw.items():
        if isinstance(expected, bool) or not isinstance(expected, (str, int, float)):
            raise FormSchemaError(f"Answer key entry '{qkey}' must be a string")
        key[str(qkey)] = str(expected)
    if field_names:
        unknown = sorted(set(key) - set(field_names))
        if unknown:
            raise FormSchemaError("Answer key refers to unknown fields: " + ", ".join(unknown))
    return key


def parse_form(raw: Dict[str, Any]) -> Form:
    """Build a ``Form`` from one entry of the forms file."""
    if not isinstance(raw, dict):
        raise FormSchemaError(f"Form entry must be an object, got {raw!r}")
    form_id = raw.get("id")
    if not isinstance(form_id, str) or not form_id:
        raise FormSchemaError("Form entry is missing an 'id'")
    kind = str(raw.get("kind", "digital")).lower()
    if kind not in _MODALITY_ALIASES:
        raise FormSchemaError(f"Form '{form_id}' has unknown kind {kind!r}")
    section = raw.get("section_number")
    if isinstance(section, bool) or not isinstance(section, int):
        raise FormSchemaError(f"Form '{form_id}' needs an integer 'section_number'")

    schema = raw.get("form_schema") or {}
    if not isinstance(schema, dict):
        raise FormSchemaError(f"Form '{form_id}' has a non-object 'form_schema'")
    fields = tuple(parse_field(f) for f in schema.get("fields", []) or [])
    names = [f.name for f in fields]
    if len(names) != len(set(names)):
        raise FormSchemaError(f"Form '{form_id}' has duplicate field names")

    return Form(
        id=form_id,
        title=str(raw.get("title", form_id)),
        section_number=section,
        modality=_MODALITY_ALIASES[kind],
        is_active=bool(raw.get("is_active", True)),
        description=str(raw.get("description") or ""),
        position=int(raw.get("position") or 0),
        fields=fields,
        answer_key=_parse_answer_key(schema.get("answerKey"), names),
    )


def load_forms(path: str) -> Dict[str, Form]:
    """Load the forms file and index forms by id.

    Parameters
    ----------
    path : str
        Path to a JSON file with a top-level ``"forms"`` list.

    Returns
    -------
    dict
        Mapping of form id to ``Form``.

    Raises
    ------
    FormSchemaError
        If any entry is malformed or two forms share an id.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    forms: Dict[str, Form] = {}
    for item in data.get("forms", []):
        form = parse_form(item)
        if form.id in forms:
            raise FormSchemaError(f"Duplicate form id '{form.id}'")
        forms[form.id] = form
    return forms
