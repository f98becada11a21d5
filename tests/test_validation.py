"""Unit tests for the preflight validation helpers."""
import pytest

from ailab_infra.utils.validation import (
    ConfigError,
    ParamSpec,
    check_parameter,
    format_missing_env_message,
    is_iso8601_duration,
    iso8601_days,
    missing_env,
    resolve_parameters,
)


class TestMissingEnv:
    def test_reports_absent_and_empty_keys(self):
        env = {"A": "1", "B": ""}
        assert missing_env(env, ["A", "B", "C"]) == ["B", "C"]

    def test_message_lists_exports(self):
        msg = format_missing_env_message(["ARM_SUBSCRIPTION_ID"])
        assert 'export ARM_SUBSCRIPTION_ID="<value>"' in msg
        assert "labctl deploy" in msg

    def test_message_empty_when_nothing_missing(self):
        assert format_missing_env_message([]) == ""


class TestCheckParameter:
    def test_required_missing(self):
        spec = ParamSpec("publisherEmail", required=True)
        assert check_parameter(spec, None) == ["publisherEmail: required parameter missing"]

    def test_optional_missing_is_fine(self):
        assert check_parameter(ParamSpec("keyVaultName"), None) == []

    def test_bool_is_not_an_int(self):
        """JSON true must not satisfy an int parameter."""
        problems = check_parameter(ParamSpec("keySize", kind=int), True)
        assert len(problems) == 1
        assert "expected int" in problems[0]

    def test_wrong_type(self):
        problems = check_parameter(ParamSpec("enableCmk", kind=bool), "yes")
        assert problems == ["enableCmk: expected bool, got 'yes'"]

    def test_allowed_values(self):
        spec = ParamSpec("skuName", allowed=("Basic", "Premium"))
        assert check_parameter(spec, "Premium") == []
        assert "is not one of [Basic, Premium]" in check_parameter(spec, "Standard")[0]

    def test_length_bounds(self):
        spec = ParamSpec("name", min_length=3, max_length=5)
        assert "below 3" in check_parameter(spec, "ab")[0]
        assert "exceeds 5" in check_parameter(spec, "abcdef")[0]

    def test_value_bounds(self):
        spec = ParamSpec("days", kind=int, min_value=7, max_value=90)
        assert check_parameter(spec, 7) == []
        assert "below 7" in check_parameter(spec, 6)[0]
        assert "exceeds 90" in check_parameter(spec, 91)[0]

    def test_pattern_must_match_whole_value(self):
        spec = ParamSpec("suffix", pattern=r"[a-z0-9]{3,14}")
        assert check_parameter(spec, "0115") == []
        assert check_parameter(spec, "Bad_Suffix")


class TestResolveParameters:
    SPECS = [
        ParamSpec("location", default="eastus2"),
        ParamSpec("suffix", required=True, pattern=r"[a-z0-9]{3,14}"),
        ParamSpec("size", kind=int, default=2048, allowed=(2048, 4096)),
    ]

    def test_applies_defaults(self):
        resolved = resolve_parameters(self.SPECS, {"suffix": "001"})
        assert resolved == {"location": "eastus2", "suffix": "001", "size": 2048}

    def test_collects_every_problem(self):
        with pytest.raises(ConfigError) as exc:
            resolve_parameters(self.SPECS, {"size": 1024, "typo": 1})
        problems = exc.value.problems
        assert "typo: unknown parameter" in problems
        assert "suffix: required parameter missing" in problems
        assert any(p.startswith("size:") for p in problems)
        assert len(problems) == 3

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            resolve_parameters(self.SPECS, {})


@pytest.mark.parametrize(
    "value,expected",
    [
        ("P90D", True),
        ("P1Y2M", True),
        ("PT12H", True),
        ("P1DT1H", True),
        ("P", False),
        ("PT", False),
        ("90D", False),
        ("", False),
    ],
)
def test_iso8601_duration(value, expected):
    assert is_iso8601_duration(value) is expected


@pytest.mark.parametrize(
    "value,days",
    [("P90D", 90), ("P3M", 90), ("P1Y", 365), ("P2W", 14), ("P1DT12H", 1.5)],
)
def test_iso8601_days(value, days):
    assert iso8601_days(value) == days


def test_iso8601_days_rejects_garbage():
    with pytest.raises(ValueError, match="Not an ISO 8601 duration"):
        iso8601_days("90 days")
