import logging
import queue
import threading

import pygame

from typing import List, NamedTuple, Optional

from chipvm.machine import KEY_COUNT

logger = logging.getLogger(__name__)

# Constants
KEY_WAIT_POLL = 0.05

# The keypad is laid out as follows:
#   1 2 3 C
#   4 5 6 D
#   7 8 9 E
#   A 0 B F
# and played with:
#   1 2 3 4
#   Q W E R
#   A S D F
#   Z X C V
KEY_LOOKUP = {
    pygame.K_1: 1,
    pygame.K_q: 4,
    pygame.K_a: 7,
    pygame.K_z: 10,
    pygame.K_2: 2,
    pygame.K_w: 5,
    pygame.K_s: 8,
    pygame.K_x: 0,
    pygame.K_3: 3,
    pygame.K_e: 6,
    pygame.K_d: 9,
    pygame.K_c: 11,
    pygame.K_4: 12,
    pygame.K_r: 13,
    pygame.K_f: 14,
    pygame.K_v: 15,
}


class KeyEvent(NamedTuple):
    key: int
    pressed: bool


class Keypad:
    """
    Carries key presses and releases from the window to the execution engine, in order, through an unbounded queue.
    The engine owns the key state; this side only ever posts events.
    """
    def __init__(self):
        self.events: "queue.Queue[Optional[KeyEvent]]" = queue.Queue()
        self.closed = False

    def on_key_event(self, raw_key: int, pressed: bool) -> Optional[int]:
        """
        Translate a platform key and post it.  Keys outside the keypad are ignored.
        :param raw_key: The pygame key constant.
        :param pressed: True for a press, False for a release.
        :return: The keypad key posted, None if the key is not part of the keypad.
        """
        key = KEY_LOOKUP.get(raw_key, None)
        if key is not None:
            self.post(key, pressed)
        return key

    def post(self, key: int, pressed: bool) -> None:
        """
        Post an event for a keypad key.
        """
        if not 0 <= key < KEY_COUNT:
            raise ValueError(f"Key {key} is not on the keypad.")
        self.events.put(KeyEvent(key, pressed))

    def close(self) -> None:
        """
        Signal that no further events will arrive.
        """
        self.closed = True
        self.events.put(None)

    def drain(self, keys: List[bool]) -> bool:
        """
        Apply every pending event to the key state without blocking.
        :param keys: The key state to update.
        :return: False once the keypad has been closed, True otherwise.
        """
        while True:
            try:
                event = self.events.get_nowait()
            except queue.Empty:
                return not self.closed
            if event is None:
                return False
            apply_event(keys, event)

    def wait_for_press(self, keys: List[bool], shutdown: threading.Event) -> Optional[int]:
        """
        Block until a key is pressed, applying any releases seen on the way.
        :param keys: The key state to update.
        :param shutdown: Abandons the wait when set.
        :return: The key pressed, None if the wait was abandoned or the keypad closed.
        """
        while not shutdown.is_set():
            try:
                event = self.events.get(timeout=KEY_WAIT_POLL)
            except queue.Empty:
                if self.closed:
                    return None
                continue
            if event is None:
                return None
            apply_event(keys, event)
            if event.pressed:
                return event.key
        return None


def apply_event(keys: List[bool], event: KeyEvent) -> None:
    keys[event.key] = event.pressed
    logger.debug(f"Key State Changed.  Key: {event.key}, Pressed: {event.pressed}.")
