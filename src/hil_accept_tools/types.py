"""Type definitions for HIL Accept Tools."""

from typing import Callable, Union

# Channel data handed to predicates: normalized text, or raw bytes when the
# accumulated data is not valid UTF-8
ChannelData = Union[str, bytes]

# Predicate over channel data: returns a Match/Mismatch, or a plain bool
Predicate = Callable[[ChannelData], object]

# Delivery callback invoked on the scheduler thread with each received chunk
DataCallback = Callable[[bytes], None]
