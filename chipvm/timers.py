import logging
import threading
import time

from typing import List, Optional

logger = logging.getLogger(__name__)

# Constants
TIMER_DELAY = 1 / 60
BYTE_MASK = 255


class SharedCounter:
    """
    An 8-bit countdown value shared between the execution engine and the timer service.
    """
    def __init__(self, value: int = 0):
        self._value = value & BYTE_MASK
        self._lock = threading.Lock()

    def get(self) -> int:
        with self._lock:
            return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = value & BYTE_MASK

    def tick(self) -> int:
        """
        Decrement the value, never going below 0.
        :return: The new value.
        """
        with self._lock:
            if self._value > 0:
                self._value -= 1
            return self._value


class TimerService:
    """
    Counts the shared delay and sound counters down at a fixed rate, independently of the execution engine.
    """
    def __init__(self, delay: SharedCounter, sound: Optional[SharedCounter] = None, interval: float = TIMER_DELAY):
        """
        Constructor.
        :param delay: The delay counter.
        :param sound: The sound counter, if it should be counted down as well.
        :param interval: Seconds between ticks.
        """
        self.counters: List[SharedCounter] = [delay] if sound is None else [delay, sound]
        self.interval = interval
        self.running = False
        self.next_tick = 0.0
        self.timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        """
        Start ticking.  The first tick happens immediately.
        """
        with self._lock:
            if self.running:
                return
            self.running = True
            self.next_tick = time.monotonic()
        logger.debug(f"Starting timer service with an interval of {self.interval}s.")
        self.tick()

    def stop(self) -> None:
        """
        Stop ticking.  No counter is modified by the service once this returns.
        """
        with self._lock:
            self.running = False
            if self.timer:
                self.timer.cancel()
                self.timer = None
        logger.debug("Stopped timer service.")

    def tick(self) -> None:
        """
        Decrement every counter and schedule the next tick.
        """
        with self._lock:
            if not self.running:
                return
            for counter in self.counters:
                counter.tick()
            # Schedule against the start time so the rate does not drift
            self.next_tick += self.interval
            self.timer = threading.Timer(max(0.0, self.next_tick - time.monotonic()), self.tick)
            self.timer.daemon = True
            self.timer.start()
