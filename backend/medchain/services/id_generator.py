"""
Client-side record identifiers.

Ids keep the familiar ``<prefix>_<epoch-ms>_<suffix>`` shape so they sort
roughly by creation time, but the suffix is taken from a UUID4 rather than a
short random string so two clients creating records in the same millisecond
cannot collide.
"""

import time
import uuid
from abc import ABC, abstractmethod

DRUG_PREFIX = "drug"
SHIPMENT_PREFIX = "ship"
PRESCRIPTION_PREFIX = "presc"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


class IdGenerator(ABC):
    """Produces unique record ids for a given prefix."""

    @abstractmethod
    def new_id(self, prefix: str) -> str:
        ...


class TimestampIdGenerator(IdGenerator):
    """Default generator: epoch milliseconds plus a base36 UUID4 suffix."""

    def __init__(self, clock=time.time):
        self._clock = clock

    def new_id(self, prefix: str) -> str:
        epoch_ms = int(self._clock() * 1000)
        suffix = to_base36(uuid.uuid4().int)
        return f"{prefix}_{epoch_ms}_{suffix}"
