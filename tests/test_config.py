from __future__ import annotations

import pytest

from turnloop.config import RunConfig


def test_defaults_are_unbounded_and_strict() -> None:
    config = RunConfig()

    assert config.max_iterations is None
    assert config.accept_truncated_output is False
    assert config.system is None
    assert config.options == {}


def test_from_mapping_builds_config() -> None:
    config = RunConfig.from_mapping(
        {"max_iterations": 3, "system": "Be brief", "options": {"temperature": 0.2}}
    )

    assert config.max_iterations == 3
    assert config.system == "Be brief"
    assert config.options == {"temperature": 0.2}


def test_from_mapping_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError, match="max_turns"):
        RunConfig.from_mapping({"max_turns": 3})


@pytest.mark.parametrize(
    ("values", "error"),
    [
        ({"max_iterations": 0}, ValueError),
        ({"max_iterations": True}, TypeError),
        ({"max_iterations": "2"}, TypeError),
        ({"accept_truncated_output": "yes"}, TypeError),
        ({"system": 1}, TypeError),
        ({"options": ["temperature"]}, TypeError),
    ],
)
def test_invalid_values_are_rejected(values: dict[str, object], error: type[Exception]) -> None:
    with pytest.raises(error):
        RunConfig.from_mapping(values)


def test_options_are_copied() -> None:
    options = {"temperature": 0.5}
    config = RunConfig(options=options)
    options["temperature"] = 1.0

    assert config.options == {"temperature": 0.5}
