from __future__ import annotations

import pytest

import core.config as config_module
from core.config import ConfigError, build_config, decode_test_data
from core.models import DataVia, FieldSource
from settings import load_config_file


def _sub(name: str = "sub-one", **extra) -> dict:
    return {"name": name, "cmd": ["echo", "GSUB_DATA"], **extra}


def test_builds_valid_config() -> None:
    config = build_config(
        {
            "project": "my-project",
            "subs": [
                _sub(
                    "  orders  ",
                    data="file",
                    **{
                        "if": [
                            {
                                "metakey": "server",
                                "equal": "^staging$",
                                "cmd": ["deploy"],
                                "then": [{"metakey": "app", "equal": "front", "cmd": ["A"]}],
                            }
                        ]
                    },
                )
            ],
        }
    )

    assert config.project == "my-project"
    assert not config.has_tests
    (sub,) = config.subscriptions
    assert sub.name == "orders"
    assert sub.topic == ""
    assert sub.data_via is DataVia.FILE
    assert sub.command.argv == ("echo", "GSUB_DATA")
    root = sub.rules[0]
    assert root.field_source is FieldSource.META_KEY
    assert root.field_name == "server"
    assert root.pattern.pattern == "^staging$"
    assert root.then[0].command.argv == ("A",)


def test_duplicate_name_is_rejected() -> None:
    with pytest.raises(ConfigError, match="duplicate subscription: orders"):
        build_config({"subs": [_sub("orders"), _sub(" orders ")]})


@pytest.mark.parametrize("name", ["ab", "", "x" * 256])
def test_name_length_is_enforced(name: str) -> None:
    with pytest.raises(ConfigError, match="invalid subscription name"):
        build_config({"subs": [_sub(name)]})


def test_name_length_bounds_are_inclusive() -> None:
    config = build_config({"subs": [_sub("abc"), _sub("y" * 255)]})
    assert [len(sub.name) for sub in config.subscriptions] == [3, 255]


def test_disabled_subscriptions_are_skipped_before_validation() -> None:
    config = build_config({"subs": [_sub("x", disable=True), _sub("kept")]})
    assert [sub.name for sub in config.subscriptions] == ["kept"]


def test_no_enabled_subscriptions_is_an_error() -> None:
    with pytest.raises(ConfigError, match="empty subscriptions list"):
        build_config({"subs": [_sub("orders", disable=True)]})


def test_data_mode_defaults_to_var() -> None:
    config = build_config({"subs": [_sub("orders"), _sub("events", data="none")]})
    assert [sub.data_via for sub in config.subscriptions] == [DataVia.VAR, DataVia.NONE]


def test_invalid_data_mode_is_rejected() -> None:
    with pytest.raises(ConfigError, match="invalid data passing method: stdin"):
        build_config({"subs": [_sub(data="stdin")]})


def test_pipe_downgrades_to_var_when_unsupported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "pipe_supported", lambda: False)
    config = build_config({"subs": [_sub(data="pipe")]})
    assert config.subscriptions[0].data_via is DataVia.VAR


def test_pipe_is_kept_when_supported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "pipe_supported", lambda: True)
    config = build_config({"subs": [_sub(data="pipe")]})
    assert config.subscriptions[0].data_via is DataVia.PIPE


def test_rule_errors_are_aggregated_across_the_tree() -> None:
    raw = {
        "subs": [
            _sub(
                "orders",
                **{
                    "if": [
                        {"metakey": "a", "equal": "ok", "then": [{"metakey": "b", "equal": "("}]},
                        {"equal": "x"},
                    ]
                },
            ),
            _sub("events", **{"if": [{"metakey": "c"}]}),
        ]
    }

    with pytest.raises(ConfigError) as excinfo:
        build_config(raw)

    errors = excinfo.value.errors
    assert len(errors) == 3
    assert any("orders: if [0, 0]: invalid pattern" in err for err in errors)
    assert "orders: if [1]: value source undefined" in errors
    assert "events: if [0]: empty pattern" in errors


def test_test_messages_decode_base64_or_keep_text() -> None:
    config = build_config(
        {
            "subs": [
                _sub(
                    "orders",
                    tests=[
                        {"data": "aGVsbG8=", "meta": {"server": "staging"}},
                        {"data": "hello world"},
                    ],
                )
            ]
        }
    )

    assert config.has_tests
    first, second = config.subscriptions[0].tests
    assert first.id == "orders_test_0"
    assert first.data == b"hello"
    assert first.attributes == {"server": "staging"}
    assert second.id == "orders_test_1"
    assert second.data == b"hello world"
    assert second.attributes == {}


def test_decode_test_data_rejects_unpadded_base64() -> None:
    assert decode_test_data("hello") == b"hello"


def test_command_must_be_a_list() -> None:
    with pytest.raises(ConfigError, match="cmd must be a list"):
        build_config({"subs": [{"name": "orders", "cmd": "echo hi"}]})


@pytest.mark.parametrize(
    "raw",
    [
        {"subs": 5},
        {"subs": [{"name": "orders", "if": "server"}]},
        {"subs": [{"name": "orders", "if": [{"metakey": "a", "equal": "b", "then": 3}]}]},
        {"subs": [{"name": "orders", "tests": ["hello"]}]},
        {"subs": [{"name": "orders", "tests": 7}]},
        {"subs": [{"name": "orders", "tests": [{"data": "x", "meta": ["a", "b"]}]}]},
    ],
)
def test_malformed_shapes_are_config_errors(raw: dict) -> None:
    with pytest.raises(ConfigError):
        build_config(raw)


def test_scalar_then_is_reported_with_its_path() -> None:
    raw = {"subs": [{"name": "orders", "if": [{"metakey": "a", "equal": "b", "then": 3}]}]}

    with pytest.raises(ConfigError) as excinfo:
        build_config(raw)

    assert excinfo.value.errors == ["orders: if [0]: then must be a list"]


def test_document_must_be_a_mapping() -> None:
    with pytest.raises(ConfigError):
        build_config(["not", "a", "mapping"])


def test_load_config_file_reads_yaml(tmp_path) -> None:
    path = tmp_path / "subs.yaml"
    path.write_text(
        "project: demo\n"
        "subs:\n"
        "  - name: orders\n"
        "    cmd: [echo, GSUB_SUB]\n"
        "    if:\n"
        "      - metakey: server\n"
        "        equal: ^staging$\n"
        "        cmd: [echo, staging]\n",
        encoding="utf-8",
    )

    config = build_config(load_config_file(str(path)))

    assert config.project == "demo"
    assert config.subscriptions[0].rules[0].command.argv == ("echo", "staging")


def test_load_config_file_reports_missing_and_malformed(tmp_path) -> None:
    with pytest.raises(ConfigError, match="Failed to read subscriptions"):
        load_config_file(str(tmp_path / "missing.yaml"))

    broken = tmp_path / "broken.yaml"
    broken.write_text("subs: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="failed to unmarshal yaml"):
        load_config_file(str(broken))
