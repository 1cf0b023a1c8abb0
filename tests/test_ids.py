"""Tests for task addressing (task_engine/ids.py)."""

from __future__ import annotations

import pytest

from task_graph.task_engine.errors import MalformedIdError
from task_graph.task_engine.ids import (
    TaskAddress,
    encode_dependency,
    format_address,
    parse_address,
    parse_address_list,
    resolve_dependency,
)


class TestParseAddress:
    def test_task_int(self) -> None:
        addr = parse_address(7)
        assert addr == TaskAddress(7)
        assert not addr.is_subtask
        assert str(addr) == "7"

    def test_task_string(self) -> None:
        assert parse_address(" 12 ") == TaskAddress(12)

    def test_subtask(self) -> None:
        addr = parse_address("3.2")
        assert addr.is_subtask
        assert addr.parent_id == 3
        assert addr.subtask_id == 2
        assert str(addr) == "3.2"

    @pytest.mark.parametrize("bad", ["", "abc", "1.", ".1", "1.2.3", "0", "0.1", "1.0", "-1", 0, -4, True, 1.5, None])
    def test_malformed(self, bad: object) -> None:
        with pytest.raises(MalformedIdError) as exc_info:
            parse_address(bad)
        assert exc_info.value.kind == "malformed_id"
        assert exc_info.value.to_dict()["value"] == str(bad)

    @pytest.mark.parametrize("bad", ["\u0663", "1.\u0662", "\uff11"])
    def test_non_ascii_digits_rejected(self, bad: str) -> None:
        with pytest.raises(MalformedIdError):
            parse_address(bad)

    def test_format(self) -> None:
        assert format_address(4) == "4"
        assert format_address(4, 1) == "4.1"

    def test_sort_key_orders_tasks_before_their_subtasks(self) -> None:
        keys = sorted([parse_address("2.1"), parse_address("1"), parse_address("2"), parse_address("1.3")],
                      key=TaskAddress.sort_key)
        assert [str(k) for k in keys] == ["1", "1.3", "2", "2.1"]


class TestAddressList:
    def test_comma_separated(self) -> None:
        assert [str(a) for a in parse_address_list("1, 2.1,3")] == ["1", "2.1", "3"]

    def test_empty_rejected(self) -> None:
        with pytest.raises(MalformedIdError):
            parse_address_list("  ")


class TestDependencyEncoding:
    def test_subtask_bare_int_is_sibling(self) -> None:
        owner = TaskAddress(5, 2)
        assert resolve_dependency(owner, 1) == TaskAddress(5, 1)

    def test_subtask_string_is_fully_qualified(self) -> None:
        owner = TaskAddress(5, 2)
        assert resolve_dependency(owner, "3") == TaskAddress(3)
        assert resolve_dependency(owner, "4.1") == TaskAddress(4, 1)

    def test_task_int_and_string_are_equivalent(self) -> None:
        owner = TaskAddress(5)
        assert resolve_dependency(owner, 3) == resolve_dependency(owner, "3") == TaskAddress(3)

    def test_canonical_forms(self) -> None:
        assert encode_dependency(TaskAddress(5), TaskAddress(3)) == 3
        assert encode_dependency(TaskAddress(5), TaskAddress(3, 1)) == "3.1"
        assert encode_dependency(TaskAddress(5, 2), TaskAddress(5, 1)) == 1
        assert encode_dependency(TaskAddress(5, 2), TaskAddress(3)) == "3"
        assert encode_dependency(TaskAddress(5, 2), TaskAddress(3, 1)) == "3.1"
