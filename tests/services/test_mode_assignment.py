"""Tests for the push/pull partition."""

import pytest

from streamwatch.services.mode_assignment import assign_modes, needs_reassignment
from streamwatch.services.models import DeliveryMode


def modes(records):
    return {r.handle: r.delivery_mode for r in records}


def test_high_priority_fills_slots_in_insertion_order(make_record):
    records = [
        make_record("1", "a", priority="high"),
        make_record("2", "b", priority="high"),
        make_record("3", "c"),
    ]
    result = assign_modes(records, capacity=1)

    assert result.changed is True
    assert modes(result.records) == {
        "a": DeliveryMode.PUSH,
        "b": DeliveryMode.PULL,
        "c": DeliveryMode.PULL,
    }


def test_removing_push_holder_promotes_next_high(make_record):
    first = assign_modes(
        [
            make_record("1", "a", priority="high"),
            make_record("2", "b", priority="high"),
            make_record("3", "c"),
        ],
        capacity=1,
    )
    remaining = [r for r in first.records if r.handle != "a"]

    result = assign_modes(remaining, capacity=1)

    assert modes(result.records) == {"b": DeliveryMode.PUSH, "c": DeliveryMode.PULL}


def test_normal_priority_never_gets_push_even_with_free_slots(make_record):
    result = assign_modes(
        [make_record("1", "a"), make_record("2", "b", mode="push")], capacity=3
    )
    assert all(r.delivery_mode == DeliveryMode.PULL for r in result.records)
    assert result.changed is True


def test_excess_push_channels_are_demoted(make_record):
    records = [
        make_record(str(i), f"ch{i}", priority="high", mode="push") for i in range(4)
    ]
    result = assign_modes(records, capacity=2)

    pushed = [r.handle for r in result.records if r.delivery_mode == DeliveryMode.PUSH]
    assert pushed == ["ch0", "ch1"]


def test_capacity_zero_puts_everything_on_pull(make_record):
    records = [make_record("1", "a", priority="high", mode="push")]
    result = assign_modes(records, capacity=0)
    assert result.records[0].delivery_mode == DeliveryMode.PULL


@pytest.mark.parametrize("capacity", [0, 1, 2, 5])
def test_assignment_is_idempotent(make_record, capacity):
    records = [
        make_record("1", "a", priority="high"),
        make_record("2", "b"),
        make_record("3", "c", priority="high"),
        make_record("4", "d", priority="high"),
    ]
    first = assign_modes(records, capacity)
    second = assign_modes(first.records, capacity)

    assert second.changed is False
    assert modes(second.records) == modes(first.records)


def test_input_is_not_mutated(make_record):
    record = make_record("1", "a", priority="high")
    assign_modes([record], capacity=1)
    assert record.delivery_mode == DeliveryMode.PULL


def test_needs_reassignment_short_circuit(make_record):
    settled = [
        make_record("1", "a", priority="high", mode="push"),
        make_record("2", "b", priority="high"),
    ]
    assert needs_reassignment(settled, capacity=1) is False
    assert needs_reassignment(settled, capacity=2) is True
    assert needs_reassignment([make_record("1", "a", mode="push")], 1) is True
