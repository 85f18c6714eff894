"""Error types for the virtual machine."""


class ChipVMError(Exception):
    """Base error for the virtual machine."""
    pass


class ProgramLoadError(ChipVMError):
    """The program file could not be opened, read, or does not fit in memory."""
    pass


class UnknownOpcodeError(ChipVMError):
    """An instruction word matched no known opcode family."""

    def __init__(self, word: int):
        super().__init__(f"Unimplemented / Invalid Opcode: {word:04x}.")
        self.word = word


class MachineFault(ChipVMError):
    """The running program misused the call stack or the address space."""
    pass


class StackOverflowError(MachineFault):
    """A subroutine call was made with the call stack already full."""
    pass


class StackUnderflowError(MachineFault):
    """A return was executed with the call stack empty."""
    pass


class ProgramCounterError(MachineFault):
    """The program counter left the addressable memory."""
    pass


class AddressError(MachineFault):
    """A store through register I fell outside of the writable memory."""
    pass
