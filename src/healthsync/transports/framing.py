"""Fragmentation of payloads for the radio data channel.

Frame layout::

    [fragment_index: 1 byte][fragment_count: 1 byte][payload: <= max_payload bytes]

Indices are zero-based.  A payload therefore splits into at most 255 frames.
"""

from __future__ import annotations

import logging

from src.healthsync.config_loader import MAX_FRAGMENTS
from src.healthsync.errors import EncodingError, FramingError

logger = logging.getLogger("healthsync.transports.framing")

HEADER_SIZE = 2


def fragment(payload: bytes, max_payload: int = 500) -> list[bytes]:
    """Split ``payload`` into ordered, header-tagged frames.

    An empty payload still yields one (header-only) frame so the receiver
    sees a complete message.

    Raises:
        EncodingError: If the payload needs more than 255 frames.
    """
    if max_payload < 1:
        raise ValueError("max_payload must be positive")
    chunks = [payload[i : i + max_payload] for i in range(0, len(payload), max_payload)] or [b""]
    if len(chunks) > MAX_FRAGMENTS:
        raise EncodingError(
            f"Payload of {len(payload)} bytes needs {len(chunks)} fragments "
            f"(max {MAX_FRAGMENTS} at {max_payload} bytes each)"
        )
    count = len(chunks)
    return [bytes((index, count)) + chunk for index, chunk in enumerate(chunks)]


class FragmentAssembler:
    """Reassemble frames from the data channel into complete payloads.

    Frames may arrive in any order.  A frame whose ``fragment_count``
    disagrees with the message in progress starts a new message; the
    partial one is discarded.
    """

    def __init__(self) -> None:
        self._expected: int | None = None
        self._fragments: dict[int, bytes] = {}

    @property
    def in_progress(self) -> bool:
        return self._expected is not None

    def reset(self) -> None:
        self._expected = None
        self._fragments = {}

    def add(self, frame: bytes) -> bytes | None:
        """Buffer one frame.

        Returns:
            The complete payload once every fragment is present, else None.

        Raises:
            FramingError: If the frame header is malformed.
        """
        if len(frame) < HEADER_SIZE:
            raise FramingError(f"Frame of {len(frame)} bytes is shorter than its header")
        index, count = frame[0], frame[1]
        if count == 0 or index >= count:
            raise FramingError(f"Invalid frame header index={index} count={count}")

        if self._expected is not None and count != self._expected:
            logger.warning(
                "Fragment count changed %d → %d mid-message; dropping %d buffered fragment(s)",
                self._expected, count, len(self._fragments),
            )
            self.reset()

        self._expected = count
        self._fragments[index] = frame[HEADER_SIZE:]
        logger.debug("Fragment %d/%d buffered", index + 1, count)

        if len(self._fragments) < count:
            return None

        payload = b"".join(self._fragments[i] for i in range(count))
        self.reset()
        return payload
