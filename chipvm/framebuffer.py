import logging
import threading

import numpy as np

from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)

# Constants
SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
SPRITE_WIDTH = 8
BYTES_PER_ROW = SCREEN_WIDTH // SPRITE_WIDTH
FRAME_BUFFER_BYTES = BYTES_PER_ROW * SCREEN_HEIGHT
BYTE_MASK = 255


class Framebuffer:
    """
    The 64x32 monochrome display, packed 8 pixels to a byte with the most significant bit leftmost.
    The execution engine is the only writer and the renderer the only reader; every access goes through the lock.
    """
    def __init__(self):
        self._bytes = bytearray(FRAME_BUFFER_BYTES)
        self._lock = threading.Lock()

    @contextmanager
    def write(self) -> Iterator[bytearray]:
        """
        Hold the lock and hand out the raw bytes for modification.
        """
        with self._lock:
            yield self._bytes

    @contextmanager
    def read(self) -> Iterator[memoryview]:
        """
        Hold the lock and hand out a read-only view of the raw bytes.
        """
        with self._lock:
            view = memoryview(self._bytes).toreadonly()
            try:
                yield view
            finally:
                view.release()

    def snapshot(self) -> bytes:
        """
        Copy the current contents.
        """
        with self._lock:
            return bytes(self._bytes)

    def clear(self) -> None:
        """
        Clear the screen.
        """
        with self._lock:
            self._bytes[:] = bytes(FRAME_BUFFER_BYTES)

    def draw_sprite(self, sprite: bytes, x: int, y: int) -> bool:
        """
        XOR the sprite onto the screen with its top left corner at the given coordinates.
        :param sprite: The sprite rows, one byte each.
        :param x: The x coordinate, wrapped to the screen width.
        :param y: The y coordinate, wrapped to the screen height.
        :return: True if any pixel was unset by the draw, False otherwise.
        """
        with self._lock:
            return composite_sprite(self._bytes, sprite, x, y)

    def to_pixels(self) -> np.ndarray:
        """
        Unpack the screen into one value per pixel, indexed [x, y], ready for pygame's surfarray.
        """
        packed = np.frombuffer(self.snapshot(), dtype=np.uint8)
        return np.unpackbits(packed).reshape((SCREEN_HEIGHT, SCREEN_WIDTH)).T


def composite_sprite(frame: bytearray, sprite: bytes, x: int, y: int) -> bool:
    """
    XOR the sprite into the packed frame.  Each sprite row is split across two neighbouring bytes of the same frame row
    when x is not a multiple of 8, wrapping back to the start of the row past the right edge and to the top of the screen
    past the bottom edge.
    :param frame: The packed frame bytes to modify.
    :param sprite: The sprite rows, one byte each.
    :param x: The x coordinate.
    :param y: The y coordinate.
    :return: True if any pixel went from set to unset.
    """
    x %= SCREEN_WIDTH
    y %= SCREEN_HEIGHT
    bit_offset = x % SPRITE_WIDTH

    first_byte = y * BYTES_PER_ROW + x // SPRITE_WIDTH
    second_byte = first_byte + 1
    # Wrap around rather than going to the next row
    if second_byte % BYTES_PER_ROW == 0:
        second_byte -= BYTES_PER_ROW

    collision = False
    for row, byte in enumerate(sprite):
        first_location = (first_byte + row * BYTES_PER_ROW) % FRAME_BUFFER_BYTES
        second_location = (second_byte + row * BYTES_PER_ROW) % FRAME_BUFFER_BYTES

        old_first = frame[first_location]
        old_second = frame[second_location]

        frame[first_location] ^= byte >> bit_offset
        if bit_offset:
            frame[second_location] ^= (byte << (SPRITE_WIDTH - bit_offset)) & BYTE_MASK

        # Any bit set before and unset after is a collision
        if old_first & ~frame[first_location] or old_second & ~frame[second_location]:
            collision = True

    logger.debug(f"Sprite of height {len(sprite)} composited at {(x, y)}, collision = {collision}.")
    return collision
