"""
Property-based tests for the Audit Logger module.

Uses Hypothesis to check output formats, the level threshold, masking of
credentials and the error context attached by log_error().
"""

import json
from io import StringIO

import pytest
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from eventsync.audit_logger import AuditLogger
from eventsync.enums import LogLevel
from eventsync.exceptions import ActionRejectedError


# Strategies for generating valid test data

component_name_strategy = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-",
    min_size=1,
    max_size=30,
)

message_strategy = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N", "P", "S", "Z"),
        blacklist_characters="\x00\n\r",
    ),
    min_size=1,
    max_size=100,
)

simple_value_strategy = st.one_of(
    st.text(max_size=30),
    st.integers(min_value=-1000, max_value=1000),
    st.booleans(),
    st.none(),
)


@st.composite
def non_sensitive_key_strategy(draw) -> str:
    """Generate keys that do not look like credentials."""
    key = draw(st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=1, max_size=15))
    for pattern in AuditLogger.SENSITIVE_KEYS:
        assume(pattern not in key)
    return key


@st.composite
def sensitive_key_strategy(draw) -> str:
    """Generate keys that do look like credentials."""
    base = draw(st.sampled_from([
        "token", "auth_token", "access_token", "secret", "password",
        "api_key", "Authorization", "credentials", "cookie",
    ]))
    prefix = draw(st.sampled_from(["", "my_", "session_"]))
    return f"{prefix}{base}"


class TestOutputFormatProperty:
    """Entries are written in every configured format."""

    @given(
        level=st.sampled_from(list(LogLevel)),
        component=component_name_strategy,
        message=message_strategy,
    )
    @settings(max_examples=100)
    def test_both_formats_written(self, level: LogLevel, component: str, message: str) -> None:
        output = StringIO()
        logger = AuditLogger(output_format="both", output_stream=output, level=LogLevel.DEBUG)

        logger.log(level, component, message, {"attempt": 1})

        json_line, text_line = output.getvalue().rstrip("\n").split("\n")
        parsed = json.loads(json_line)
        assert parsed["level"] == level.value
        assert parsed["component"] == component
        assert parsed["message"] == message
        assert parsed["data"] == {"attempt": 1}
        assert f"[{component}]" in text_line
        assert level.value.upper() in text_line

    def test_text_includes_data(self) -> None:
        output = StringIO()
        logger = AuditLogger(output_format="text", output_stream=output)

        logger.log(LogLevel.INFO, "SyncSession", "connected -> reconnecting", {"reason": "server_close"})

        assert '"reason": "server_close"' in output.getvalue()

    def test_invalid_format_rejected(self) -> None:
        with pytest.raises(ValueError):
            AuditLogger(output_format="xml")


class TestLevelThresholdProperty:
    """Entries below the threshold are dropped."""

    @given(threshold=st.sampled_from(list(LogLevel)), level=st.sampled_from(list(LogLevel)))
    @settings(max_examples=50)
    def test_threshold(self, threshold: LogLevel, level: LogLevel) -> None:
        order = list(LogLevel)
        output = StringIO()
        logger = AuditLogger(output_format="json", output_stream=output, level=threshold)

        entry = logger.log(level, "OfflineActionQueue", "drain")

        if order.index(level) >= order.index(threshold):
            assert entry is not None
            assert len(logger.entries) == 1
        else:
            assert entry is None
            assert output.getvalue() == ""

    @given(limit=st.integers(min_value=1, max_value=20), count=st.integers(min_value=0, max_value=60))
    @settings(max_examples=50)
    def test_recorded_entries_are_bounded(self, limit: int, count: int) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO(), max_entries=limit)

        for i in range(count):
            logger.log(LogLevel.INFO, "SyncSession", f"transition {i}")

        messages = [entry.message for entry in logger.entries]
        assert len(messages) == min(limit, count)
        assert messages == [f"transition {i}" for i in range(count - len(messages), count)]

    def test_from_config_falls_back_to_info(self) -> None:
        assert AuditLogger.from_config("chatty", "json").level == LogLevel.INFO
        assert AuditLogger.from_config("WARN", "text").level == LogLevel.WARN


class TestSensitiveDataMaskingProperty:
    """Credentials never reach the output."""

    @given(key=sensitive_key_strategy(), value=st.text(min_size=8, max_size=30, alphabet="abcdef0123456789"))
    @settings(max_examples=100)
    def test_sensitive_data_masked(self, key: str, value: str) -> None:
        output = StringIO()
        logger = AuditLogger(output_format="json", output_stream=output)

        logger.log(LogLevel.INFO, "WebSocketTransport", "connecting", {key: value})

        assert value not in output.getvalue()
        assert AuditLogger.MASK_VALUE in output.getvalue()

    @given(data=st.dictionaries(non_sensitive_key_strategy(), simple_value_strategy, max_size=5))
    @settings(max_examples=100)
    def test_non_sensitive_data_not_masked(self, data: dict) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        assert logger.mask_sensitive_data(data) == data

    def test_nested_sensitive_data_masked(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        masked = logger.mask_sensitive_data({
            "request": {"headers": {"Authorization": "Bearer abc"}, "path": "/scan"},
            "items": [{"token": "t"}, "plain"],
        })

        assert masked["request"]["headers"]["Authorization"] == AuditLogger.MASK_VALUE
        assert masked["request"]["path"] == "/scan"
        assert masked["items"] == [{"token": AuditLogger.MASK_VALUE}, "plain"]


class TestErrorContextProperty:
    """log_error() records what went wrong."""

    @given(message=message_strategy, component=component_name_strategy)
    @settings(max_examples=50)
    def test_error_logs_include_error_context(self, message: str, component: str) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        entry = logger.log_error(component, "Send failed", error=RuntimeError(message), additional_data={"id": "a1"})

        assert entry is not None
        assert entry.level == LogLevel.ERROR
        assert entry.data["error_message"] == message
        assert entry.data["error_type"] == "RuntimeError"
        assert entry.data["id"] == "a1"
        assert "error_code" not in entry.data

    def test_sync_error_code_recorded(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        entry = logger.log_error(
            "OfflineActionQueue",
            "Rejected",
            error=ActionRejectedError(code="ALREADY_USED", message="used"),
        )

        assert entry.data["error_code"] == "ALREADY_USED"
        assert entry.data["error_type"] == "ActionRejectedError"

    def test_error_without_exception(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        entry = logger.log_error("EventDispatcher", "Hook failed")

        assert entry.data == {}
        logger.clear_entries()
        assert logger.entries == []
