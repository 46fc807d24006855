"""
Face descriptor matching.

Descriptors are computed in the browser (128 floats per face); the server
only compares a live sample against the enrolled one. Two descriptors of the
same person sit close together in descriptor space, so a Euclidean distance
under a fixed threshold counts as a match.
"""

import json
import math

import numpy as np

import config


class DescriptorError(ValueError):
    pass


def parse_descriptor(value) -> list:
    """Validate a client-supplied descriptor: a non-empty list of finite numbers."""
    if not isinstance(value, list) or not value:
        raise DescriptorError("Invalid face descriptor format. Expected non-empty array.")
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (int, float)) or not math.isfinite(item):
            raise DescriptorError("Invalid face descriptor. All elements must be numbers.")
    return [float(x) for x in value]


def load_descriptor(stored: str) -> list:
    """Decode a descriptor stored as JSON text in the users table."""
    try:
        return parse_descriptor(json.loads(stored))
    except (TypeError, json.JSONDecodeError) as e:
        raise DescriptorError(f"Stored face descriptor is unreadable: {e}") from e


def dump_descriptor(descriptor: list) -> str:
    return json.dumps(descriptor)


def descriptor_distance(live: list, enrolled: list) -> float:
    if len(live) != len(enrolled):
        raise DescriptorError(
            f"Descriptor length mismatch: {len(live)} != {len(enrolled)}"
        )
    return float(np.linalg.norm(np.asarray(live) - np.asarray(enrolled)))


def is_match(live: list, enrolled: list, threshold: float = None) -> tuple:
    """Return (verified, distance, threshold)."""
    if threshold is None:
        threshold = config.FACE_MATCH_THRESHOLD
    distance = descriptor_distance(live, enrolled)
    return distance < threshold, distance, threshold
