"""
Property-based tests for configuration loading, saving and validation.

Uses Hypothesis to check that a configuration written by the CLI loads back
unchanged and that validation flags every unusable value.
"""

import json
import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from eventsync.cli import (
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    validate_config,
)
from eventsync.config import (
    ActionEndpointConfig,
    HeartbeatConfig,
    LoggingConfig,
    QueueConfig,
    ReconnectConfig,
    SyncConfig,
    TransportConfig,
)


# Strategies for generating valid configuration objects

@st.composite
def transport_config_strategy(draw) -> TransportConfig:
    """Generate valid TransportConfig objects."""
    host = draw(st.text(alphabet="abcdefghijklmnop", min_size=1, max_size=12))
    return TransportConfig(
        endpoint=f"{draw(st.sampled_from(['ws', 'wss']))}://{host}.example/ws",
        connect_timeout_seconds=draw(st.floats(min_value=0.5, max_value=60.0)),
        send_timeout_seconds=draw(st.floats(min_value=0.5, max_value=60.0)),
        query=draw(st.dictionaries(
            st.text(alphabet="abcdefgh", min_size=1, max_size=6),
            st.text(alphabet="abcdefgh0123456789", max_size=6),
            min_size=1,
            max_size=3,
        )),
    )


@st.composite
def reconnect_config_strategy(draw) -> ReconnectConfig:
    """Generate valid ReconnectConfig objects."""
    base = draw(st.floats(min_value=0.0, max_value=10.0))
    return ReconnectConfig(
        base_delay_seconds=base,
        max_delay_seconds=draw(st.floats(min_value=base, max_value=300.0)),
        max_jitter_seconds=draw(st.floats(min_value=0.0, max_value=5.0)),
        max_attempts=draw(st.integers(min_value=1, max_value=100)),
    )


@st.composite
def sync_config_strategy(draw) -> SyncConfig:
    """Generate valid SyncConfig objects."""
    actions = draw(st.one_of(
        st.none(),
        st.builds(
            ActionEndpointConfig,
            base_url=st.just("https://api.example.test"),
            scan_path=st.sampled_from(["/api/tickets/scan", "/scan"]),
            timeout_seconds=st.floats(min_value=1.0, max_value=60.0),
        ),
    ))
    return SyncConfig(
        transport=draw(transport_config_strategy()),
        queue=QueueConfig(
            storage_dir=Path(draw(st.sampled_from(["/tmp/eventsync", "queue", "/var/lib/eventsync/q"]))),
            storage_key=draw(st.sampled_from(["scanner_offline_queue_v1", "queue"])),
            max_attempts=draw(st.one_of(st.none(), st.integers(min_value=1, max_value=50))),
        ),
        reconnect=draw(reconnect_config_strategy()),
        heartbeat=HeartbeatConfig(
            interval_seconds=draw(st.floats(min_value=1.0, max_value=120.0)),
            timeout_seconds=draw(st.floats(min_value=1.0, max_value=60.0)),
            max_missed=draw(st.integers(min_value=1, max_value=10)),
        ),
        logging=LoggingConfig(
            level=draw(st.sampled_from(["debug", "info", "warn", "error"])),
            output_format=draw(st.sampled_from(["json", "text", "both"])),
        ),
        actions=actions,
        language=draw(st.sampled_from(["de", "en"])),
    )


class TestConfigurationRoundTripProperty:
    """A saved configuration loads back without data loss."""

    @given(config=sync_config_strategy())
    @settings(max_examples=100, deadline=None)
    def test_config_round_trip_preserves_data(self, config: SyncConfig) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "nested" / "config.json"

            assert save_config_to_file(config, path)
            loaded = load_config_from_file(path)

        assert loaded == config

    @given(config=sync_config_strategy())
    @settings(max_examples=50, deadline=None)
    def test_round_trip_is_idempotent(self, config: SyncConfig) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            first = Path(tmp_dir) / "first.json"
            second = Path(tmp_dir) / "second.json"

            save_config_to_file(config, first)
            save_config_to_file(load_config_from_file(first), second)

            assert json.loads(first.read_text()) == json.loads(second.read_text())

    @given(config=sync_config_strategy())
    @settings(max_examples=100)
    def test_generated_configs_are_valid(self, config: SyncConfig) -> None:
        assert validate_config(config) == []


class TestConfigLoading:
    """Missing fields fall back to defaults; broken files load as None."""

    def test_minimal_file_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "config.json"
            path.write_text(json.dumps({"transport": {"endpoint": "wss://sync.example/ws"}}))

            config = load_config_from_file(path)

        assert config is not None
        assert config.transport.endpoint == "wss://sync.example/ws"
        assert config.reconnect == ReconnectConfig()
        assert config.heartbeat == HeartbeatConfig()
        assert config.queue.max_attempts is None
        assert config.actions is None
        assert config.language == "en"

    def test_missing_file_returns_none(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            assert load_config_from_file(Path(tmp_dir) / "absent.json") is None

    @given(content=st.sampled_from([
        "{not json",
        "[]",
        "{}",
        '{"transport": {}}',
        '{"transport": {"endpoint": "wss://x"}, "reconnect": {"max_attempts": "many"}}',
    ]))
    @settings(max_examples=10, deadline=None)
    def test_broken_file_returns_none(self, content: str) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "config.json"
            path.write_text(content)

            assert load_config_from_file(path) is None

    def test_default_config(self) -> None:
        config = create_default_config(
            endpoint="wss://sync.example/ws",
            storage_dir=Path("/tmp/q"),
            language="de",
            actions_base_url="https://api.example",
        )

        assert config.transport.query["clientType"] == "python"
        assert config.queue.storage_dir == Path("/tmp/q")
        assert config.actions is not None
        assert config.actions.scan_path == "/api/tickets/scan"
        assert config.language == "de"
        assert validate_config(config) == []
        assert create_default_config().actions is None


class TestConfigValidation:
    """Every unusable value is reported."""

    def test_all_problems_reported(self) -> None:
        config = create_default_config(endpoint="ftp://example/ws")
        config.transport.connect_timeout_seconds = 0
        config.reconnect.base_delay_seconds = 10.0
        config.reconnect.max_delay_seconds = 5.0
        config.reconnect.max_attempts = 0
        config.heartbeat.max_missed = 0
        config.queue.max_attempts = 0
        config.logging.level = "loud"
        config.logging.output_format = "xml"
        config.language = "fr"

        problems = validate_config(config)

        assert len(problems) == 9
        assert any("scheme" in p for p in problems)
        assert any(p.startswith("language") for p in problems)

    @given(scheme=st.sampled_from(["ws", "wss", "http", "https"]))
    @settings(max_examples=10)
    def test_supported_schemes(self, scheme: str) -> None:
        assert validate_config(create_default_config(endpoint=f"{scheme}://h/ws")) == []
