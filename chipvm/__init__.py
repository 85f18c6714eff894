"""A CHIP-8 virtual machine."""

from chipvm.decoder import Operation, OpKind, decode, disassemble
from chipvm.engine import Engine
from chipvm.errors import AddressError, ChipVMError, MachineFault, ProgramLoadError, UnknownOpcodeError
from chipvm.framebuffer import Framebuffer
from chipvm.keypad import Keypad
from chipvm.machine import Machine
from chipvm.timers import SharedCounter, TimerService

__version__ = "0.1.0"
