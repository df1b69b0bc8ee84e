"""
Process-wide highest cluster time for one client.
"""

import logging
from collections.abc import Mapping
from typing import Any

from bson.timestamp import Timestamp

_LOGGER = logging.getLogger(__name__)

ClusterTime = Mapping[str, Any]
"""A ``$clusterTime`` document: ``{"clusterTime": Timestamp, "signature": {...}}``."""


def validate_cluster_time(cluster_time: Any) -> ClusterTime:
    """
    Check that a value is a well-formed ``$clusterTime`` document.

    Raises:
        TypeError: If the value is not a mapping.
        ValueError: If ``clusterTime`` is missing or not a bson Timestamp.
    """
    if not isinstance(cluster_time, Mapping):
        raise TypeError("cluster_time must be a subclass of collections.abc.Mapping")
    if not isinstance(cluster_time.get("clusterTime"), Timestamp):
        raise ValueError("Invalid cluster_time: 'clusterTime' must be a bson Timestamp")
    return cluster_time


def newer_cluster_time(
    current: ClusterTime | None, candidate: ClusterTime | None
) -> ClusterTime | None:
    """Return whichever document has the strictly greater ``clusterTime``, preferring ``current`` on ties."""
    if candidate is None:
        return current
    if current is None or candidate["clusterTime"] > current["clusterTime"]:
        return candidate
    return current


class ClusterTimeTracker:
    """
    Holds the single highest ``$clusterTime`` document seen across all sessions of one client.

    `advance` is a compare-and-set max: the stored document is replaced only when the candidate's
    logical timestamp is strictly greater. The comparison and assignment happen in one
    synchronous step, so concurrent replies handled on the event loop cannot move it backwards.
    """

    def __init__(self) -> None:
        self._cluster_time: ClusterTime | None = None

    @property
    def cluster_time(self) -> ClusterTime | None:
        """The highest cluster time seen so far, or None."""
        return self._cluster_time

    def advance(self, cluster_time: ClusterTime | None) -> bool:
        """
        Raise the tracked cluster time if ``cluster_time`` is newer.

        Args:
            cluster_time (ClusterTime | None): A ``$clusterTime`` document from a reply. None is ignored.

        Returns:
            bool: True if the tracked value changed.
        """
        if cluster_time is None:
            return False
        newest = newer_cluster_time(self._cluster_time, cluster_time)
        if newest is self._cluster_time:
            return False
        self._cluster_time = newest
        _LOGGER.debug(f"[ClusterTimeTracker] Advanced to {newest['clusterTime']}")
        return True
