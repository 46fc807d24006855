"""
Unit tests for face descriptor matching.
"""

import math

import pytest

from face_match import (
    DescriptorError,
    descriptor_distance,
    dump_descriptor,
    is_match,
    load_descriptor,
    parse_descriptor,
)


def test_distance_is_euclidean():
    assert descriptor_distance([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)


def test_identical_descriptors_match():
    d = [0.1] * 128
    verified, distance, threshold = is_match(d, d)
    assert verified
    assert distance == 0.0
    assert threshold == 0.4


def test_threshold_is_strict():
    verified, distance, _ = is_match([0.4], [0.0], threshold=0.4)
    assert distance == pytest.approx(0.4)
    assert not verified


def test_far_descriptors_do_not_match():
    verified, _, _ = is_match([1.0] * 128, [0.0] * 128)
    assert not verified


def test_length_mismatch_rejected():
    with pytest.raises(DescriptorError):
        descriptor_distance([0.1, 0.2], [0.1])


@pytest.mark.parametrize("value", [None, [], "0.1,0.2", [0.1, "x"], [True, 0.2], [math.nan]])
def test_parse_rejects_bad_input(value):
    with pytest.raises(DescriptorError):
        parse_descriptor(value)


def test_stored_descriptor_roundtrip():
    d = [0.25, -0.5, 1]
    assert load_descriptor(dump_descriptor(d)) == [0.25, -0.5, 1.0]


def test_unreadable_stored_descriptor():
    with pytest.raises(DescriptorError):
        load_descriptor("{not json")
