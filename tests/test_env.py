"""
Unit tests for remote_shell.env module.

Tests environment declaration parsing, name validation and the quoted
prologue, including a round trip through a real POSIX shell.
"""

import os
import subprocess

import pytest

from remote_shell.env import add_env, parse_env
from remote_shell.exceptions import EnvValidationError

SH = "/bin/sh"


def run_in_shell(script: str) -> str:
    return subprocess.run(
        [SH], input=script.encode(), stdout=subprocess.PIPE, check=True
    ).stdout.decode()


class TestAddEnv:
    """Tests for add_env function."""

    def test_empty_list_is_noop(self):
        """Test an empty declaration list returns the script unchanged."""
        assert add_env("echo hi", []) == "echo hi"

    def test_value_with_space(self):
        """Test a value with a space is single quoted."""
        assert add_env("echo $FOO", ["FOO=bar baz"]) == "FOO='bar baz'; export FOO\necho $FOO"

    def test_plain_value_unquoted(self):
        """Test a value with only safe characters is emitted as is."""
        assert add_env("env", ["PATH_EXTRA=/opt/bin"]) == "PATH_EXTRA=/opt/bin; export PATH_EXTRA\nenv"

    def test_order_preserved(self):
        """Test lines are emitted in declaration order."""
        result = add_env("true", ["B=2", "A=1", "C=3"])
        assert result.splitlines() == [
            "B=2; export B",
            "A=1; export A",
            "C=3; export C",
            "true",
        ]

    def test_split_on_first_equals(self):
        """Test values may contain equals signs."""
        assert add_env("", ["OPTS=a=b=c"]) == "OPTS=a=b=c; export OPTS\n"

    def test_empty_value(self):
        """Test an empty value becomes an empty quoted string."""
        assert add_env("", ["EMPTY="]) == "EMPTY=''; export EMPTY\n"

    def test_single_quote_value(self):
        """Test embedded single quotes are escaped."""
        assert add_env("", ["Q=it's"]) == "Q='it'\"'\"'s'; export Q\n"

    def test_script_kept_verbatim(self):
        """Test multi-line scripts are appended untouched."""
        script = "set -e\nfor i in 1 2; do\n  echo $i\ndone\n"
        assert add_env(script, ["X=1"]).endswith(script)

    def test_accepts_generator(self):
        """Test any iterable of declarations is accepted."""
        assert add_env("x", (d for d in ["A=1"])) == "A=1; export A\nx"

    @pytest.mark.parametrize(
        "declaration",
        ["1BAD=x", "BAD NAME=x", "=x", "A-B=x", "A.B=x", "A$B=x", "É=x", "NOEQUALS", "a;rm -rf /=x"],
    )
    def test_invalid_names(self, declaration):
        """Test names that are not shell identifiers are rejected."""
        with pytest.raises(EnvValidationError) as exc_info:
            add_env("echo hi", [declaration])
        assert exc_info.value.declaration == declaration

    def test_no_partial_output(self):
        """Test a bad declaration after good ones produces nothing."""
        with pytest.raises(EnvValidationError) as exc_info:
            add_env("echo hi", ["GOOD=1", "ALSO_GOOD=2", "1BAD=3"])
        assert exc_info.value.declaration == "1BAD=3"

    def test_validation_error_is_value_error(self):
        """Test validation errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            add_env("", ["BAD NAME=x"])


class TestParseEnv:
    """Tests for parse_env function."""

    def test_pairs(self):
        """Test declarations split into name and value."""
        assert parse_env(["A=1", "B=x=y", "_C="]) == [("A", "1"), ("B", "x=y"), ("_C", "")]

    def test_empty(self):
        """Test an empty list parses to nothing."""
        assert parse_env([]) == []

    def test_missing_equals_message(self):
        """Test a declaration without '=' explains the problem."""
        with pytest.raises(EnvValidationError, match="missing '='"):
            parse_env(["JUSTANAME"])


@pytest.mark.skipif(not os.path.exists(SH), reason="requires a POSIX shell")
class TestShellRoundTrip:
    """Tests that a real shell sees exactly the original values."""

    @pytest.mark.parametrize(
        "value",
        [
            "plain",
            "with space",
            "it's",
            'double "quoted"',
            "$HOME and ${PATH}",
            "`id` and $(id)",
            "line one\nline two",
            "tab\there",
            "semi; colon && pipe | amp &",
            "back\\slash",
            "glob * ? [a]",
            "",
            "=leading=equals",
            "unicode é ü",
        ],
    )
    def test_value_round_trip(self, value):
        """Test the exported value is bound unchanged."""
        script = add_env('printf %s "$VALUE"', [f"VALUE={value}"])
        assert run_in_shell(script) == value

    def test_exported_to_children(self):
        """Test variables are exported to child processes."""
        script = add_env(f"{SH} -c 'printf %s \"$CHILD\"'", ["CHILD=inherited value"])
        assert run_in_shell(script) == "inherited value"

    def test_several_variables(self):
        """Test several variables are bound together."""
        script = add_env('printf "%s|%s" "$A" "$B"', ["A=x y", "B=$A"])
        assert run_in_shell(script) == "x y|$A"
