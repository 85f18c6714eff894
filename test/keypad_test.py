import threading

import pygame
import pytest

from chipvm.keypad import KEY_LOOKUP, KeyEvent, Keypad


class TestKeyLookup:
    def test_every_key_is_mapped_once(self):
        assert sorted(KEY_LOOKUP.values()) == list(range(16)), "Every keypad key should be mapped exactly once."

    def test_layout(self):
        assert KEY_LOOKUP[pygame.K_1] == 1, "Top left key mapped incorrectly."
        assert KEY_LOOKUP[pygame.K_4] == 12, "Top right key mapped incorrectly."
        assert KEY_LOOKUP[pygame.K_x] == 0, "Zero key mapped incorrectly."
        assert KEY_LOOKUP[pygame.K_v] == 15, "Bottom right key mapped incorrectly."


class TestKeypad:
    def setup_method(self):
        self.keypad = Keypad()
        self.keys = [False] * 16
        self.shutdown = threading.Event()

    def test_on_key_event(self):
        assert self.keypad.on_key_event(pygame.K_q, True) == 4, "Mapped key was not translated."
        assert self.keypad.events.get_nowait() == KeyEvent(4, True), "Translated key was not posted."

    def test_unmapped_key_ignored(self):
        assert self.keypad.on_key_event(pygame.K_p, True) is None, "Unmapped key was translated."
        assert self.keypad.events.empty(), "Unmapped key was posted."

    def test_drain(self):
        self.keypad.post(3, True)
        self.keypad.post(5, True)
        self.keypad.post(3, False)

        assert self.keypad.drain(self.keys), "Open keypad reported as closed."
        assert not self.keys[3], "Events were not applied in order."
        assert self.keys[5], "Press was not applied."
        assert self.keypad.events.empty(), "Not every pending event was drained."

    def test_drain_without_events(self):
        assert self.keypad.drain(self.keys), "Draining an empty queue reported the keypad closed."
        assert not any(self.keys), "Draining an empty queue changed the key state."

    def test_drain_after_close(self):
        self.keypad.post(2, True)
        self.keypad.close()

        assert not self.keypad.drain(self.keys), "Closed keypad reported as open."
        assert self.keys[2], "Events before the close were dropped."
        assert not self.keypad.drain(self.keys), "Closed keypad reported as open on a later drain."

    def test_wait_for_press(self):
        self.keys[7] = True
        self.keypad.post(7, False)
        self.keypad.post(9, True)
        self.keypad.post(1, True)

        assert self.keypad.wait_for_press(self.keys, self.shutdown) == 9, "Wait did not return the first press."
        assert not self.keys[7], "Release seen while waiting was not applied."
        assert self.keys[9], "Press which ended the wait was not applied."
        assert not self.keys[1], "Events after the press were consumed by the wait."

    def test_wait_for_press_from_other_thread(self):
        timer = threading.Timer(0.05, self.keypad.post, args=(11, True))
        timer.start()
        try:
            assert self.keypad.wait_for_press(self.keys, self.shutdown) == 11, "Wait did not see the press from another thread."
        finally:
            timer.cancel()

    def test_wait_abandoned_on_shutdown(self):
        timer = threading.Timer(0.05, self.shutdown.set)
        timer.start()
        try:
            assert self.keypad.wait_for_press(self.keys, self.shutdown) is None, "Wait was not abandoned on shutdown."
        finally:
            timer.cancel()

    def test_wait_abandoned_on_close(self):
        self.keypad.post(4, False)
        self.keypad.close()
        assert self.keypad.wait_for_press(self.keys, self.shutdown) is None, "Wait was not abandoned when the keypad closed."

    def test_post_rejects_keys_off_the_keypad(self):
        with pytest.raises(ValueError):
            self.keypad.post(16, True)
        with pytest.raises(ValueError):
            self.keypad.post(-1, False)
        assert self.keypad.events.empty(), "Key off the keypad was posted."
