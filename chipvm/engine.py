import logging
import random
import threading
import time

from typing import Callable, Dict, Optional, Tuple

from chipvm.decoder import INSTRUCTION_SIZE, Operation, OpKind, decode
from chipvm.errors import ChipVMError, ProgramCounterError
from chipvm.framebuffer import Framebuffer
from chipvm.keypad import Keypad
from chipvm.machine import DIGIT_SPRITE_SIZE, FLAG_REGISTER, KEY_COUNT, MEMORY_SIZE, Machine
from chipvm.timers import SharedCounter, TimerService

logger = logging.getLogger(__name__)

# Constants
BYTE_MASK = 255
REGISTER_I_MASK = 65535
OPCODE_DELAY = 0.0


class Engine:
    """
    The fetch-decode-execute loop.  Owns the machine state and the timer service, shares the framebuffer with the
    renderer, the counters with the timer service and receives key events from the keypad.
    """
    def __init__(
        self,
        machine: Optional[Machine] = None,
        framebuffer: Optional[Framebuffer] = None,
        keypad: Optional[Keypad] = None,
        shutdown: Optional[threading.Event] = None,
        rng: Optional[random.Random] = None,
        cycle_delay: float = OPCODE_DELAY,
    ):
        """
        Constructor.
        :param machine: The machine state, a fresh one if not provided.
        :param framebuffer: The display shared with the renderer.
        :param keypad: The source of key events.
        :param shutdown: Stops the loop when set.
        :param rng: The random number generator for the RND opcode.
        :param cycle_delay: Seconds to wait after every instruction.
        """
        self.machine = machine if machine is not None else Machine()
        self.framebuffer = framebuffer if framebuffer is not None else Framebuffer()
        self.keypad = keypad if keypad is not None else Keypad()
        self.shutdown = shutdown if shutdown is not None else threading.Event()
        self.rng = rng if rng is not None else random.Random()
        self.cycle_delay = cycle_delay

        self.delay = SharedCounter()
        self.sound = SharedCounter()
        self.timers = TimerService(self.delay, self.sound)

        self.next_program_counter = self.machine.program_counter
        self.error: Optional[Exception] = None
        self.thread: Optional[threading.Thread] = None
    # region Loop
    def start(self) -> threading.Thread:
        """
        Run the loop on its own thread.  Any fatal error is kept in self.error and sets the shutdown signal.
        """
        self.thread = threading.Thread(target=self.run_in_thread, name="chipvm-engine", daemon=True)
        self.thread.start()
        return self.thread

    def run_in_thread(self) -> None:
        try:
            self.run()
        except ChipVMError as error:
            self.error = error
        except Exception as error:
            logger.exception("Engine thread stopped by an unexpected error.")
            self.error = error
        finally:
            self.shutdown.set()

    def run(self) -> None:
        """
        Run instructions until the shutdown signal is set, keeping the timers going meanwhile.
        """
        self.timers.start()
        try:
            while self.step():
                if self.cycle_delay:
                    time.sleep(self.cycle_delay)
        except ChipVMError as error:
            logger.error(f"Execution stopped at {hex(self.machine.program_counter)}: {error}")
            raise
        finally:
            self.timers.stop()
        logger.debug("Execution stopped by the shutdown signal.")

    def step(self) -> bool:
        """
        Fetch, decode and execute a single instruction.
        :return: False if the loop should stop, True otherwise.
        """
        if self.shutdown.is_set():
            return False

        if not self.keypad.drain(self.machine.keys):
            logger.debug("Keypad closed, shutting down.")
            self.shutdown.set()
            return False

        self.execute(self.fetch())
        return not self.shutdown.is_set()

    def fetch(self) -> Operation:
        """
        Decode the instruction at the program counter.
        """
        program_counter = self.machine.program_counter
        if program_counter < 0 or program_counter > MEMORY_SIZE - INSTRUCTION_SIZE:
            raise ProgramCounterError(f"Program counter {hex(program_counter)} is outside of memory.")
        return decode(self.machine.ram[program_counter:program_counter + INSTRUCTION_SIZE])

    def execute(self, operation: Operation) -> None:
        """
        Route the operation to the method which executes it, then move the program counter on.  The program counter is
        only updated if the operation completes.
        :param operation: The operation to execute.
        """
        self.next_program_counter = self.machine.program_counter + INSTRUCTION_SIZE
        OPCODE_HANDLERS[operation.kind](self, operation)
        self.machine.program_counter = self.next_program_counter

    def skip_next_instruction(self) -> None:
        self.next_program_counter += INSTRUCTION_SIZE
        logger.debug("Instruction skipped.")
    # endregion

    # region Opcodes
    def opcode_sys(self, operation: Operation) -> None:
        """
        Machine code routines are not supported; ignore the call.
        :param operation: The operation to execute.
        """
        logger.debug(f"Execute Opcode {operation}: SYS instruction found, ignoring.")

    def opcode_clear_screen(self, operation: Operation) -> None:
        """
        Clear the screen.
        :param operation: The operation to execute.
        """
        self.framebuffer.clear()
        logger.debug(f"Execute Opcode {operation}: Clearing the screen.")

    def opcode_return_from_subroutine(self, operation: Operation) -> None:
        """
        Return from the current subroutine, continuing after the call which entered it.
        :param operation: The operation to execute.
        """
        self.next_program_counter = self.machine.pop() + INSTRUCTION_SIZE
        logger.debug(f"Execute Opcode {operation}: Return from subroutine, continue at {hex(self.next_program_counter)}.")

    def opcode_goto(self, operation: Operation) -> None:
        """
        Jump to the provided address.
        :param operation: The operation to execute.
        """
        self.next_program_counter = operation.address
        logger.debug(f"Execute Opcode {operation}: Jump to address {hex(operation.address)}.")

    def opcode_call_subroutine(self, operation: Operation) -> None:
        """
        Call the subroutine at the given address, remembering the address of this call.
        :param operation: The operation to execute.
        """
        self.machine.push(self.machine.program_counter)
        self.next_program_counter = operation.address
        logger.debug(f"Execute Opcode {operation}: Call subroutine at address {hex(operation.address)}.")

    def opcode_if_equal(self, operation: Operation) -> None:
        """
        Skip the next instruction if the value of the provided register is equal to the provided value.
        :param operation: The operation to execute.
        """
        register_value = self.machine.registers[operation.x]
        logger.debug(f"Execute Opcode {operation}: Skip next instruction if register {operation.x}'s value ({register_value}) is {operation.value}.")
        if register_value == operation.value:
            self.skip_next_instruction()

    def opcode_if_not_equal(self, operation: Operation) -> None:
        """
        Skip the next instruction if the value of the provided register is not equal to the provided value.
        :param operation: The operation to execute.
        """
        register_value = self.machine.registers[operation.x]
        logger.debug(f"Execute Opcode {operation}: Skip next instruction if register {operation.x}'s value ({register_value}) is not {operation.value}.")
        if register_value != operation.value:
            self.skip_next_instruction()

    def opcode_if_register_equal(self, operation: Operation) -> None:
        """
        Skip the next instruction if the values of the two provided registers are equal.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        logger.debug(f"Execute Opcode {operation}: Skip next instruction if register {operation.x}'s value ({registers[operation.x]}) is equal to register {operation.y}'s value ({registers[operation.y]}).")
        if registers[operation.x] == registers[operation.y]:
            self.skip_next_instruction()

    def opcode_set_register_value(self, operation: Operation) -> None:
        """
        Set the value of the provided register to the provided value.
        :param operation: The operation to execute.
        """
        self.machine.registers[operation.x] = operation.value
        logger.debug(f"Execute Opcode {operation}: Set the value of register {operation.x} to {operation.value}.")

    def opcode_add_value(self, operation: Operation) -> None:
        """
        Adds the provided value to the value of the provided register.  The carry flag (register 15) is not set.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        registers[operation.x] = (registers[operation.x] + operation.value) & BYTE_MASK
        logger.debug(f"Execute Opcode {operation}: Add {operation.value} to the value of register {operation.x}.")

    def opcode_set_register_value_other_register(self, operation: Operation) -> None:
        """
        Set the value of the first provided register to the value of the second provided register.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        registers[operation.x] = registers[operation.y]
        logger.debug(f"Execute Opcode {operation}: Set the value of register {operation.x} to register {operation.y}'s value ({registers[operation.y]}).")

    def opcode_set_register_bitwise_or(self, operation: Operation) -> None:
        """
        Sets the value of the first provided register to the bitwise or of itself and the value of the second provided register.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        registers[operation.x] |= registers[operation.y]
        logger.debug(f"Execute Opcode {operation}: Register {operation.x} is now {registers[operation.x]}.")

    def opcode_set_register_bitwise_and(self, operation: Operation) -> None:
        """
        Sets the value of the first provided register to the bitwise and of itself and the value of the second provided register.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        registers[operation.x] &= registers[operation.y]
        logger.debug(f"Execute Opcode {operation}: Register {operation.x} is now {registers[operation.x]}.")

    def opcode_set_register_bitwise_xor(self, operation: Operation) -> None:
        """
        Sets the value of the first provided register to the bitwise xor of itself and the value of the second provided register.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        registers[operation.x] ^= registers[operation.y]
        logger.debug(f"Execute Opcode {operation}: Register {operation.x} is now {registers[operation.x]}.")

    def opcode_add_other_register(self, operation: Operation) -> None:
        """
        Sets the value of the first provided register to the sum of itself and the value of the second provided register.  The carry flag (register 15) is set.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        first_register_value = registers[operation.x]
        second_register_value = registers[operation.y]
        sum_of_registers = first_register_value + second_register_value
        carry = 1 if sum_of_registers > BYTE_MASK else 0
        registers[operation.x] = sum_of_registers & BYTE_MASK
        registers[FLAG_REGISTER] = carry
        logger.debug(f"Execute Opcode {operation}: {first_register_value} + {second_register_value} = {registers[operation.x]}, carry = {carry}.")

    def opcode_subtract_from_first_register(self, operation: Operation) -> None:
        """
        Sets the value of the first provided register to the difference of itself and the value of the second provided register.  The not borrow flag (register 15) is set.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        first_register_value = registers[operation.x]
        second_register_value = registers[operation.y]
        result, not_borrow = bounded_subtract(first_register_value, second_register_value)
        registers[operation.x] = result
        registers[FLAG_REGISTER] = not_borrow
        logger.debug(f"Execute Opcode {operation}: {first_register_value} - {second_register_value} = {result}, not borrow = {not_borrow}.")

    def opcode_bit_shift_right(self, operation: Operation) -> None:
        """
        Shift the value of the provided register to the right by 1.  Register 15 is set to the least significant bit before the shift.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        register_value = registers[operation.x]
        registers[FLAG_REGISTER] = register_value & 1
        registers[operation.x] = register_value >> 1
        logger.debug(f"Execute Opcode {operation}: {register_value} >> 1 = {register_value >> 1}, previous least significant bit = {register_value & 1}.")

    def opcode_subtract_from_second_register(self, operation: Operation) -> None:
        """
        Sets the value of the first provided register to the difference of the value of the second provided register and itself.  The not borrow flag (register 15) is set.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        first_register_value = registers[operation.x]
        second_register_value = registers[operation.y]
        result, not_borrow = bounded_subtract(second_register_value, first_register_value)
        registers[operation.x] = result
        registers[FLAG_REGISTER] = not_borrow
        logger.debug(f"Execute Opcode {operation}: {second_register_value} - {first_register_value} = {result}, not borrow = {not_borrow}.")

    def opcode_bit_shift_left(self, operation: Operation) -> None:
        """
        Shift the value of the provided register to the left by 1.  Register 15 is set to the most significant bit before the shift.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        register_value = registers[operation.x]
        most_significant_bit = (register_value >> 7) & 1
        registers[FLAG_REGISTER] = most_significant_bit
        registers[operation.x] = (register_value << 1) & BYTE_MASK
        logger.debug(f"Execute Opcode {operation}: {register_value} << 1 = {(register_value << 1) & BYTE_MASK}, previous most significant bit = {most_significant_bit}.")

    def opcode_if_register_not_equal(self, operation: Operation) -> None:
        """
        Skip the next instruction if the values of the two provided registers are not equal.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        logger.debug(f"Execute Opcode {operation}: Skip next instruction if register {operation.x}'s value ({registers[operation.x]}) is not equal to register {operation.y}'s value ({registers[operation.y]}).")
        if registers[operation.x] != registers[operation.y]:
            self.skip_next_instruction()

    def opcode_set_register_i(self, operation: Operation) -> None:
        """
        Sets the value of register I to the provided address.
        :param operation: The operation to execute.
        """
        self.machine.register_i = operation.address
        logger.debug(f"Execute Opcode {operation}: Set register I to {hex(operation.address)}.")

    def opcode_goto_addition(self, operation: Operation) -> None:
        """
        Jump to the provided address plus the value of register 0.
        :param operation: The operation to execute.
        """
        self.next_program_counter = operation.address + self.machine.registers[0]
        logger.debug(f"Execute Opcode {operation}: Jump to {hex(self.next_program_counter)}.")

    def opcode_random_bitwise_and(self, operation: Operation) -> None:
        """
        Set the value of the provided register to the bitwise and of the provided value and a random number [0, 255].
        :param operation: The operation to execute.
        """
        random_value = self.rng.randint(0, BYTE_MASK)
        result = operation.value & random_value
        self.machine.registers[operation.x] = result
        logger.debug(f"Execute Opcode {operation}: {operation.value} & {random_value} = {result}.")

    def opcode_draw_sprite(self, operation: Operation) -> None:
        """
        Draws the sprite with the provided height found at the address in register I to the coordinates in the provided registers.  The collision flag (register 15) is set to 1 if a pixel was unset, 0 otherwise.
        :param operation: The operation to execute.
        """
        registers = self.machine.registers
        x_coordinate = registers[operation.x]
        y_coordinate = registers[operation.y]
        sprite = self.machine.read_block(self.machine.register_i, operation.value)
        collision = self.framebuffer.draw_sprite(sprite, x_coordinate, y_coordinate)
        registers[FLAG_REGISTER] = 1 if collision else 0
        logger.debug(f"Execute Opcode {operation}: Drawing the sprite with a height of {operation.value} found at address {hex(self.machine.register_i)} at {(x_coordinate, y_coordinate)}, collision = {collision}.")

    def opcode_if_key_pressed(self, operation: Operation) -> None:
        """
        Skip the next instruction if the key represented by the value of the provided register is pressed.
        :param operation: The operation to execute.
        """
        key = self.machine.registers[operation.x] % KEY_COUNT
        pressed = self.machine.keys[key]
        logger.debug(f"Execute Opcode {operation}: Skip next instruction if key {key} is pressed ({pressed}).")
        if pressed:
            self.skip_next_instruction()

    def opcode_if_key_not_pressed(self, operation: Operation) -> None:
        """
        Skip the next instruction if the key represented by the value of the provided register is not pressed.
        :param operation: The operation to execute.
        """
        key = self.machine.registers[operation.x] % KEY_COUNT
        pressed = self.machine.keys[key]
        logger.debug(f"Execute Opcode {operation}: Skip next instruction if key {key} is not pressed ({pressed}).")
        if not pressed:
            self.skip_next_instruction()

    def opcode_get_delay_timer(self, operation: Operation) -> None:
        """
        Sets the value of the provided register to the value of the delay timer.
        :param operation: The operation to execute.
        """
        self.machine.registers[operation.x] = self.delay.get()
        logger.debug(f"Execute Opcode {operation}: Set the value of register {operation.x} to the value of the delay timer ({self.machine.registers[operation.x]}).")

    def opcode_wait_for_key_press(self, operation: Operation) -> None:
        """
        Block all execution until a key is pressed, then store it in the provided register.  If the shutdown signal is
        set while waiting the instruction is left incomplete.
        :param operation: The operation to execute.
        """
        logger.debug(f"Execute Opcode {operation}: Blocking operation until a keypress is detected and stored in register {operation.x}.")
        key = self.keypad.wait_for_press(self.machine.keys, self.shutdown)
        if key is None:
            self.shutdown.set()
            self.next_program_counter = self.machine.program_counter
            logger.debug("Stopped waiting for a keypress.")
            return

        self.machine.registers[operation.x] = key
        logger.debug(f"Storing the key {key} in the register {operation.x}, un-blocking execution.")

    def opcode_set_delay_timer(self, operation: Operation) -> None:
        """
        Sets the delay timer to the value of the provided register.
        :param operation: The operation to execute.
        """
        register_value = self.machine.registers[operation.x]
        self.delay.set(register_value)
        logger.debug(f"Execute Opcode {operation}: Set the value of the delay timer to value of register {operation.x} ({register_value}).")

    def opcode_set_sound_timer(self, operation: Operation) -> None:
        """
        Sets the sound timer to the value of the provided register.
        :param operation: The operation to execute.
        """
        register_value = self.machine.registers[operation.x]
        self.sound.set(register_value)
        logger.debug(f"Execute Opcode {operation}: Set the value of the sound timer to value of register {operation.x} ({register_value}).")

    def opcode_register_i_addition(self, operation: Operation) -> None:
        """
        Add the value of the provided register to register I.  Register 15 is not modified.
        :param operation: The operation to execute.
        """
        register_value = self.machine.registers[operation.x]
        self.machine.register_i = (self.machine.register_i + register_value) & REGISTER_I_MASK
        logger.debug(f"Execute Opcode {operation}: Register I is now {hex(self.machine.register_i)}.")

    def opcode_set_register_i_to_hex_sprite_address(self, operation: Operation) -> None:
        """
        Sets the value of register I to the address of the hexadecimal sprite represented by the value in the provided register.
        :param operation: The operation to execute.
        """
        register_value = self.machine.registers[operation.x]
        self.machine.register_i = register_value * DIGIT_SPRITE_SIZE
        logger.debug(f"Execute Opcode {operation}: Set register I to the address ({self.machine.register_i}) of the sprite for {register_value}.")

    def opcode_binary_coded_decimal(self, operation: Operation) -> None:
        """
        Store the Binary Coded Decimal representation of the value of the provided register in memory, starting at the value of register I.
        Hundreds digit stored in memory at the location of the value of register I.
        Tens digit stored in memory at the location of the value of register I + 1.
        Units digit stored in memory at the location of the value of register I + 2.
        :param operation: The operation to execute.
        """
        register_value = self.machine.registers[operation.x]
        register_i = self.machine.register_i
        hundreds = register_value // 100
        tens = register_value // 10 % 10
        units = register_value % 10
        self.machine.write_block(register_i, bytes([hundreds, tens, units]))
        logger.debug(f"Execute Opcode {operation}: Stored {register_value} as {(hundreds, tens, units)} starting at {hex(register_i)}.")

    def opcode_register_dump(self, operation: Operation) -> None:
        """
        Store the values of all registers from register 0 to the provided register in memory, starting at the value of register I.
        Register I is moved past the stored values.
        :param operation: The operation to execute.
        """
        last_register = operation.x
        logger.debug(f"Execute Opcode {operation}: Dumping registers 0 to {last_register} into memory, starting at {hex(self.machine.register_i)}.")
        self.machine.write_block(self.machine.register_i, self.machine.registers[:last_register + 1])
        self.machine.register_i = (self.machine.register_i + last_register + 1) & REGISTER_I_MASK

    def opcode_register_load(self, operation: Operation) -> None:
        """
        Load the values of all registers from register 0 to the provided register from memory, starting at the value of register I.
        Register I is moved past the loaded values.
        :param operation: The operation to execute.
        """
        last_register = operation.x
        logger.debug(f"Execute Opcode {operation}: Loading registers 0 to {last_register} from memory, starting at {hex(self.machine.register_i)}.")
        for register in range(last_register + 1):
            self.machine.registers[register] = self.machine.read_memory(self.machine.register_i + register)
        self.machine.register_i = (self.machine.register_i + last_register + 1) & REGISTER_I_MASK
    # endregion


# Every operation kind and the method which executes it.
OPCODE_HANDLERS: Dict[OpKind, Callable[[Engine, Operation], None]] = {
    OpKind.SYS: Engine.opcode_sys,
    OpKind.CLS: Engine.opcode_clear_screen,
    OpKind.RET: Engine.opcode_return_from_subroutine,
    OpKind.JP: Engine.opcode_goto,
    OpKind.CALL: Engine.opcode_call_subroutine,
    OpKind.SE_BYTE: Engine.opcode_if_equal,
    OpKind.SNE_BYTE: Engine.opcode_if_not_equal,
    OpKind.SE_REG: Engine.opcode_if_register_equal,
    OpKind.LD_BYTE: Engine.opcode_set_register_value,
    OpKind.ADD_BYTE: Engine.opcode_add_value,
    OpKind.LD_REG: Engine.opcode_set_register_value_other_register,
    OpKind.OR: Engine.opcode_set_register_bitwise_or,
    OpKind.AND: Engine.opcode_set_register_bitwise_and,
    OpKind.XOR: Engine.opcode_set_register_bitwise_xor,
    OpKind.ADD_REG: Engine.opcode_add_other_register,
    OpKind.SUB: Engine.opcode_subtract_from_first_register,
    OpKind.SHR: Engine.opcode_bit_shift_right,
    OpKind.SUBN: Engine.opcode_subtract_from_second_register,
    OpKind.SHL: Engine.opcode_bit_shift_left,
    OpKind.SNE_REG: Engine.opcode_if_register_not_equal,
    OpKind.LD_I: Engine.opcode_set_register_i,
    OpKind.JP_V0: Engine.opcode_goto_addition,
    OpKind.RND: Engine.opcode_random_bitwise_and,
    OpKind.DRW: Engine.opcode_draw_sprite,
    OpKind.SKP: Engine.opcode_if_key_pressed,
    OpKind.SKNP: Engine.opcode_if_key_not_pressed,
    OpKind.LD_VX_DT: Engine.opcode_get_delay_timer,
    OpKind.LD_VX_K: Engine.opcode_wait_for_key_press,
    OpKind.LD_DT_VX: Engine.opcode_set_delay_timer,
    OpKind.LD_ST_VX: Engine.opcode_set_sound_timer,
    OpKind.ADD_I: Engine.opcode_register_i_addition,
    OpKind.LD_F: Engine.opcode_set_register_i_to_hex_sprite_address,
    OpKind.LD_B: Engine.opcode_binary_coded_decimal,
    OpKind.LD_MEM_REGS: Engine.opcode_register_dump,
    OpKind.LD_REGS_MEM: Engine.opcode_register_load,
}


def bounded_subtract(minuend: int, subtrahend: int) -> Tuple[int, int]:
    """
    Subtract the subtrahend from the minuend, bounded by the confines of a byte.
    :param minuend: The integer from which to subtract.
    :param subtrahend: The integer to subtract.
    :return: The result of the subtraction and the not borrow (1 if the minuend was strictly greater, 0 otherwise).
    """
    result = (minuend - subtrahend) & BYTE_MASK
    not_borrow = 1 if minuend > subtrahend else 0
    return result, not_borrow
