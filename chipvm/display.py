import logging
import threading

import pygame

from chipvm.framebuffer import SCREEN_HEIGHT, SCREEN_WIDTH, Framebuffer
from chipvm.keypad import Keypad

logger = logging.getLogger(__name__)

# Constants
SCALED_SCREEN_WIDTH = 800
SCALED_SCREEN_HEIGHT = 400
FRAME_RATE = 60

COLOUR_PALETTE = [(0, 0, 0), (0, 255, 0)]


class Display:
    """
    The window: paints the framebuffer on its own cadence and forwards key events to the keypad.
    Must run on the main thread.
    """
    def __init__(
        self,
        framebuffer: Framebuffer,
        keypad: Keypad,
        shutdown: threading.Event,
        width: int = SCALED_SCREEN_WIDTH,
        height: int = SCALED_SCREEN_HEIGHT,
        caption: str = "ChipVM",
    ):
        self.framebuffer = framebuffer
        self.keypad = keypad
        self.shutdown = shutdown
        self.size = (width, height)

        pygame.init()
        pygame.display.init()
        pygame.display.set_caption(caption)
        self.screen = pygame.display.set_mode(self.size, 0, 8)
        self.screen.set_palette(COLOUR_PALETTE)
        self.inter_screen = pygame.Surface((SCREEN_WIDTH, SCREEN_HEIGHT), 0, 8)
        self.inter_screen.set_palette(COLOUR_PALETTE)
        self.clock = pygame.time.Clock()

    def draw_to_display(self) -> None:
        """
        Update the display.
        """
        pygame.surfarray.blit_array(self.inter_screen, self.framebuffer.to_pixels())
        pygame.transform.scale(self.inter_screen, self.size, self.screen)
        pygame.display.flip()

    def handle_event(self, event: pygame.event.Event) -> None:
        """
        Route a single window event.
        """
        if event.type == pygame.QUIT:
            logger.debug("Window closed.")
            self.shutdown.set()
        elif event.type == pygame.KEYDOWN or event.type == pygame.KEYUP:
            self.keypad.on_key_event(event.key, event.type == pygame.KEYDOWN)

    def event_loop(self) -> None:
        """
        Loop which handles all events and redraws the screen until the shutdown signal is set.
        """
        try:
            while not self.shutdown.is_set():
                for event in pygame.event.get():
                    self.handle_event(event)
                self.draw_to_display()
                self.clock.tick(FRAME_RATE)
        finally:
            self.keypad.close()
            pygame.quit()
