"""ChipVM: run a CHIP-8 program in a window.

Usage:
    python -m chipvm                  Pick a game with a file dialog
    python -m chipvm PONG.ch8         Run the given game
    python -m chipvm PONG.ch8 -s 10   Scale each pixel to 10x10
    python -m chipvm PONG.ch8 --debug Trace every executed opcode
    python -m chipvm PONG.ch8 --disassemble
                                      List the program instead of running it
"""

import argparse
import logging
import sys
import threading

import easygui

from pathlib import Path
from typing import List, Optional

from chipvm.decoder import disassemble
from chipvm.engine import Engine
from chipvm.errors import ChipVMError
from chipvm.framebuffer import Framebuffer, SCREEN_HEIGHT, SCREEN_WIDTH
from chipvm.keypad import Keypad
from chipvm.machine import GAME_START_ADDRESS, Machine

logger = logging.getLogger(__name__)

# Constants
OPCODE_DELAY = 1 / 500
ENGINE_JOIN_TIMEOUT = 1.0
GAMES_PATH = str(Path.cwd().joinpath("games", "*.ch8"))


def pick_game() -> Optional[str]:
    """
    Let the player pick a game with a file dialog.
    :return: The selected path, None if the dialog was dismissed.
    """
    file_name = easygui.fileopenbox(title="Select a Game", default=GAMES_PATH, filetypes=[["*.ch8", "*.chip8", "CHIP-8"]])
    if not file_name:
        easygui.msgbox("Pick a game to play!", "No Game Selected")
        return None
    return file_name


def print_listing(program: bytes) -> None:
    for address, word, operation in disassemble(program, GAME_START_ADDRESS):
        print(f"{address:03x}: {word:04x}  {operation if operation is not None else '???'}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chipvm", description="Run a CHIP-8 program.")
    parser.add_argument("program", nargs="?", default=None,
                        help="Program file to run (default: pick one with a file dialog)")
    parser.add_argument("-s", "--scale", type=int, default=None,
                        help="Size in window pixels of each display pixel (default: 800x400 window)")
    parser.add_argument("-d", "--cycle-delay", type=float, default=OPCODE_DELAY,
                        help=f"Seconds to wait between instructions (default: {OPCODE_DELAY})")
    parser.add_argument("--debug", action="store_true", default=False,
                        help="Log every executed opcode")
    parser.add_argument("--disassemble", action="store_true", default=False,
                        help="Print the program as mnemonics and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING,
                        format="[%(levelname)s]:  %(message)s", stream=sys.stdout)

    picked = args.program is None
    program = pick_game() if picked else args.program
    if program is None:
        return 1

    machine = Machine()
    try:
        machine.load_program(program)
    except ChipVMError as error:
        if picked:
            easygui.msgbox(str(error), "Game Not Loaded")
        print(f"Error: {error}", file=sys.stderr)
        return 1

    if args.disassemble:
        print_listing(machine.ram[GAME_START_ADDRESS:GAME_START_ADDRESS + machine.program_size])
        return 0

    # Imported late so that pygame only starts once there is a game to show
    from chipvm.display import Display, SCALED_SCREEN_HEIGHT, SCALED_SCREEN_WIDTH

    if args.scale:
        size = (SCREEN_WIDTH * args.scale, SCREEN_HEIGHT * args.scale)
    else:
        size = (SCALED_SCREEN_WIDTH, SCALED_SCREEN_HEIGHT)

    framebuffer = Framebuffer()
    keypad = Keypad()
    shutdown = threading.Event()
    engine = Engine(machine, framebuffer, keypad, shutdown, cycle_delay=args.cycle_delay)
    display = Display(framebuffer, keypad, shutdown, size[0], size[1], caption=Path(program).stem)

    engine.start()
    try:
        display.event_loop()
    except KeyboardInterrupt:
        print("Aborted.", file=sys.stderr)
        return 130
    finally:
        shutdown.set()
        engine.thread.join(ENGINE_JOIN_TIMEOUT)

    if engine.error is not None:
        print(f"Error: {engine.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
