import logging

from pathlib import Path
from typing import List, Union

from chipvm.errors import AddressError, ProgramLoadError, StackOverflowError, StackUnderflowError

logger = logging.getLogger(__name__)

# Constants
MEMORY_SIZE = 4096
REGISTER_COUNT = 16
STACK_SIZE = 16
KEY_COUNT = 16
FLAG_REGISTER = 15
GAME_START_ADDRESS = 512
INTERPRETER_END_ADDRESS = 80
DIGIT_SPRITE_SIZE = 5
MAX_PROGRAM_SIZE = MEMORY_SIZE - GAME_START_ADDRESS


class Machine:
    """
    The register file, memory, call stack and key state of the virtual machine.
    Only the execution engine mutates it.
    """
    def __init__(self):
        """
        Constructor.
        """
        self.ram = bytearray(MEMORY_SIZE)
        self.registers = bytearray(REGISTER_COUNT)
        self.register_i = 0
        self.program_counter = GAME_START_ADDRESS
        self.stack: List[int] = [0] * STACK_SIZE
        self.stack_pointer = 0
        self.keys: List[bool] = [False] * KEY_COUNT
        self.program_size = 0

        self.load_digit_sprites()

    def load_digit_sprites(self) -> None:
        """
        Load the sprites for the hexadecimal digits 0-f into memory.
        """
        self.ram[0:5] = bytes.fromhex("f0909090f0")
        self.ram[5:10] = bytes.fromhex("2060202070")
        self.ram[10:15] = bytes.fromhex("f010f080f0")
        self.ram[15:20] = bytes.fromhex("f010f010f0")
        self.ram[20:25] = bytes.fromhex("9090f01010")
        self.ram[25:30] = bytes.fromhex("f080f010f0")
        self.ram[30:35] = bytes.fromhex("f080f090f0")
        self.ram[35:40] = bytes.fromhex("f010204040")
        self.ram[40:45] = bytes.fromhex("f090f090f0")
        self.ram[45:50] = bytes.fromhex("f090f010f0")
        self.ram[50:55] = bytes.fromhex("f090f09090")
        self.ram[55:60] = bytes.fromhex("e090e090e0")
        self.ram[60:65] = bytes.fromhex("f0808080f0")
        self.ram[65:70] = bytes.fromhex("e0909090e0")
        self.ram[70:75] = bytes.fromhex("f080f080f0")
        self.ram[75:80] = bytes.fromhex("f080f08080")

    def load_program(self, path: Union[str, Path]) -> None:
        """
        Load the program at the given path into memory at the game start address.
        :param path: The program file.
        """
        path = Path(path)
        logger.debug(f"Loading game at path {path}.")
        try:
            with path.open("rb") as file:
                program = file.read()
        except OSError as error:
            raise ProgramLoadError(f"Game could not be loaded from {path}: {error}") from error

        self.load_bytes(program)

    def load_bytes(self, program: bytes) -> None:
        """
        Load a program image into memory at the game start address.  Memory is left untouched if the image is rejected.
        :param program: The raw program bytes.
        """
        if not program:
            raise ProgramLoadError("The game is empty.")
        if len(program) > MAX_PROGRAM_SIZE:
            raise ProgramLoadError(f"The game is {len(program)} bytes but at most {MAX_PROGRAM_SIZE} bytes fit in memory.")

        self.ram[GAME_START_ADDRESS:GAME_START_ADDRESS + len(program)] = program
        self.program_size = len(program)
        logger.debug(f"Loaded {len(program)} bytes at address {hex(GAME_START_ADDRESS)}.")

    def read_memory(self, address: int) -> int:
        """
        Read a byte of memory.  Addresses wrap around the end of memory.
        """
        return self.ram[address % MEMORY_SIZE]

    def write_block(self, address: int, data: bytes) -> None:
        """
        Write a run of memory starting at the given address.  Nothing is written if any byte would land in the digit
        sprites or past the end of memory.
        """
        if address < INTERPRETER_END_ADDRESS or address + len(data) > MEMORY_SIZE:
            raise AddressError(f"Tried to write {len(data)} bytes at {hex(address)}, outside of {hex(INTERPRETER_END_ADDRESS)}-{hex(MEMORY_SIZE - 1)}.")
        self.ram[address:address + len(data)] = data

    def read_block(self, address: int, length: int) -> bytes:
        """
        Read a run of memory starting at the given address, wrapping around the end of memory.
        """
        return bytes(self.read_memory(address + offset) for offset in range(length))

    def push(self, address: int) -> None:
        """
        Push a return address onto the call stack.
        """
        if self.stack_pointer >= STACK_SIZE:
            raise StackOverflowError(f"Tried to call a subroutine from {hex(address)} with {STACK_SIZE} calls already nested.")
        self.stack[self.stack_pointer] = address
        self.stack_pointer += 1

    def pop(self) -> int:
        """
        Pop a return address off the call stack.
        """
        if self.stack_pointer == 0:
            raise StackUnderflowError("Tried to return from a subroutine when the stack is empty.")
        self.stack_pointer -= 1
        return self.stack[self.stack_pointer]
