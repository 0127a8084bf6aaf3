"""Mapping helpers between turnloop tool specs and provider schemas."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import json
import re
from typing import Any

from ..errors import AdapterError
from ..message import ToolCallPart, _ensure_json_compatible, _freeze_json_structure, thaw_json_structure

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Canonical tool/function description offered to the model."""

    name: str
    parameters: Mapping[str, Any]
    description: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _NAME_PATTERN.fullmatch(self.name):
            msg = "tool name must match ^[a-zA-Z0-9_-]{1,64}$"
            raise AdapterError(msg)

        normalized_description: str | None = None
        if self.description is not None:
            if not isinstance(self.description, str):
                msg = "tool description must be a string when provided"
                raise AdapterError(msg)
            stripped = self.description.strip()
            if not stripped:
                msg = "tool description cannot be empty"
                raise AdapterError(msg)
            normalized_description = stripped

        if not isinstance(self.parameters, Mapping):
            msg = "tool parameters must be a mapping"
            raise AdapterError(msg)

        raw_parameters = thaw_json_structure(self.parameters)
        try:
            _ensure_json_compatible(raw_parameters, path=f"ToolSpec('{self.name}').parameters")
        except (TypeError, ValueError) as exc:
            raise AdapterError(str(exc)) from exc

        sanitized = json.loads(json.dumps(raw_parameters, allow_nan=False))

        if sanitized.get("type") != "object":
            msg = "tool parameters must describe a JSON object"
            raise AdapterError(msg)

        properties = sanitized.get("properties", {})
        if not isinstance(properties, dict):
            msg = "tool parameters 'properties' must be a mapping"
            raise AdapterError(msg)

        required = sanitized.get("required")
        if required is not None:
            if not isinstance(required, list):
                msg = "tool parameter 'required' must be a list of strings"
                raise AdapterError(msg)
            for item in required:
                if item not in properties:
                    msg = f"required parameter '{item}' is not defined"
                    raise AdapterError(msg)

        if normalized_description is not None:
            object.__setattr__(self, "description", normalized_description)
        object.__setattr__(self, "parameters", _freeze_json_structure(sanitized))


def tool_specs_to_openai(tool_specs: Sequence[ToolSpec]) -> list[dict[str, Any]]:
    """Convert tool specifications to the Chat Completions ``tools`` schema."""

    if isinstance(tool_specs, (str, bytes, bytearray)) or isinstance(tool_specs, Mapping):
        msg = "tools must be provided as a sequence of ToolSpec instances"
        raise AdapterError(msg)

    normalized_tools: list[dict[str, Any]] = []
    seen_names: set[str] = set()

    for index, spec in enumerate(tool_specs):
        if not isinstance(spec, ToolSpec):
            msg = f"tools[{index}] must be a ToolSpec"
            raise AdapterError(msg)
        if spec.name in seen_names:
            msg = f"duplicate tool name '{spec.name}'"
            raise AdapterError(msg)
        seen_names.add(spec.name)

        function_payload: dict[str, Any] = {
            "name": spec.name,
            "parameters": thaw_json_structure(spec.parameters),
        }
        if spec.description is not None:
            function_payload["description"] = spec.description

        normalized_tools.append({"type": "function", "function": function_payload})

    return normalized_tools


def tool_call_to_openai(tool_call: ToolCallPart) -> dict[str, Any]:
    """Convert a tool-call part into the Chat Completions representation."""

    return {
        "id": tool_call.id,
        "type": "function",
        "function": {
            "name": tool_call.name,
            "arguments": json.dumps(thaw_json_structure(tool_call.parameters), allow_nan=False),
        },
    }


def parse_tool_arguments(raw: str | Mapping[str, Any] | None, *, name: str) -> dict[str, Any]:
    """Parse buffered tool-call arguments into a JSON object.

    An empty buffer means the tool takes no arguments. Anything that is not a
    JSON object raises :class:`AdapterError`.
    """

    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        parsed: Any = thaw_json_structure(raw)
    elif isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            msg = f"arguments for tool '{name}' are not valid JSON: {exc.msg}"
            raise AdapterError(msg) from exc
    else:
        msg = f"arguments for tool '{name}' must be a JSON string or mapping"
        raise AdapterError(msg)

    if not isinstance(parsed, dict):
        msg = f"arguments for tool '{name}' must decode to a JSON object"
        raise AdapterError(msg)
    # json.loads accepts NaN and Infinity, which ToolCallPart rejects.
    try:
        _ensure_json_compatible(parsed, path=f"arguments for tool '{name}'")
    except (TypeError, ValueError) as exc:
        raise AdapterError(str(exc)) from exc
    return parsed
