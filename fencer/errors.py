"""Errors raised by the fencing core."""

from typing import List


class NodeNotCachedError(Exception):
    """The node was expected in the cache but not found."""

    def __init__(self, key: str):
        super().__init__(f"node not found in cache: {key}")
        self.key = key


class FencingError(Exception):
    """A pod could not be fenced."""


class UnexpectedVolumeAttacherError(FencingError):
    """The VolumeAttachment belongs to a different CSI driver."""


class AggregateError(FencingError):
    """Several independent operations failed; all causes are kept."""

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        lines = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} error(s) occurred: {lines}")
