"""
Tests for custom parameter parsing and rendering.
"""

import pytest

from monorun.errors import ConfigurationError
from monorun.parameters import CHOICE, INTEGER, STRING, STRING_LIST, CustomParameter, parse_custom_args


@pytest.fixture
def params():
    return [
        CustomParameter(long_name="--production", short_name="-p"),
        CustomParameter(long_name="--locale", kind=STRING),
        CustomParameter(long_name="--target", kind=CHOICE, alternatives=("es5", "es2020")),
        CustomParameter(long_name="--workers", kind=INTEGER),
        CustomParameter(long_name="--tag", kind=STRING_LIST),
    ]


def _render(param):
    args = []
    param.append_to_arg_list(args)
    return args


def test_parse_all_forms(params):
    parsed = parse_custom_args(
        ["-p", "--locale", "en-us", "--target=es2020", "--workers", "4", "--tag", "a", "--tag=b"],
        params,
    )

    assert _render(parsed["--production"]) == ["--production"]
    assert _render(parsed["--locale"]) == ["--locale", "en-us"]
    assert _render(parsed["--target"]) == ["--target", "es2020"]
    assert _render(parsed["--workers"]) == ["--workers", "4"]
    assert _render(parsed["--tag"]) == ["--tag", "a", "--tag", "b"]


def test_unpassed_parameters_render_nothing(params):
    parsed = parse_custom_args([], params)
    for p in parsed.values():
        assert _render(p) == []


def test_default_is_rendered_when_not_passed():
    p = CustomParameter(long_name="--locale", kind=STRING, default="en-us")
    assert _render(p) == ["--locale", "en-us"]


def test_unknown_parameter(params):
    with pytest.raises(ConfigurationError) as exc:
        parse_custom_args(["--nope"], params)
    assert exc.value.kind == "UnknownParameter"


def test_invalid_choice(params):
    with pytest.raises(ConfigurationError) as exc:
        parse_custom_args(["--target", "es3"], params)
    assert exc.value.kind == "InvalidParameter"


def test_integer_must_parse(params):
    with pytest.raises(ConfigurationError) as exc:
        parse_custom_args(["--workers", "many"], params)
    assert exc.value.kind == "InvalidParameter"


def test_value_required(params):
    with pytest.raises(ConfigurationError):
        parse_custom_args(["--locale"], params)


def test_flag_rejects_value(params):
    with pytest.raises(ConfigurationError):
        parse_custom_args(["--production=yes"], params)


def test_required_parameter_missing():
    p = CustomParameter(long_name="--env", kind=STRING, required=True)
    with pytest.raises(ConfigurationError) as exc:
        parse_custom_args([], [p])
    assert "--env" in exc.value.message


def test_long_name_needs_dashes():
    with pytest.raises(ConfigurationError):
        CustomParameter(long_name="production")


def test_unknown_kind():
    with pytest.raises(ConfigurationError):
        CustomParameter(long_name="--x", kind="float")
