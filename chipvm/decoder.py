import enum

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from chipvm.errors import UnknownOpcodeError

# Constants
UPPER_CHAR_MASK = 240
LOWER_CHAR_MASK = 15
ADDRESS_MASK = 4095
INSTRUCTION_SIZE = 2


class OpKind(enum.Enum):
    """
    The tag of every operation the machine understands.
    """
    SYS = "SYS"
    CLS = "CLS"
    RET = "RET"
    JP = "JP"
    CALL = "CALL"
    SE_BYTE = "SE_BYTE"
    SNE_BYTE = "SNE_BYTE"
    SE_REG = "SE_REG"
    LD_BYTE = "LD_BYTE"
    ADD_BYTE = "ADD_BYTE"
    LD_REG = "LD_REG"
    OR = "OR"
    AND = "AND"
    XOR = "XOR"
    ADD_REG = "ADD_REG"
    SUB = "SUB"
    SHR = "SHR"
    SUBN = "SUBN"
    SHL = "SHL"
    SNE_REG = "SNE_REG"
    LD_I = "LD_I"
    JP_V0 = "JP_V0"
    RND = "RND"
    DRW = "DRW"
    SKP = "SKP"
    SKNP = "SKNP"
    LD_VX_DT = "LD_VX_DT"
    LD_VX_K = "LD_VX_K"
    LD_DT_VX = "LD_DT_VX"
    LD_ST_VX = "LD_ST_VX"
    ADD_I = "ADD_I"
    LD_F = "LD_F"
    LD_B = "LD_B"
    LD_MEM_REGS = "LD_MEM_REGS"
    LD_REGS_MEM = "LD_REGS_MEM"


MNEMONICS = {
    OpKind.SYS: "SYS {address:#05x}",
    OpKind.CLS: "CLS",
    OpKind.RET: "RET",
    OpKind.JP: "JP {address:#05x}",
    OpKind.CALL: "CALL {address:#05x}",
    OpKind.SE_BYTE: "SE V{x:X}, {value:#04x}",
    OpKind.SNE_BYTE: "SNE V{x:X}, {value:#04x}",
    OpKind.SE_REG: "SE V{x:X}, V{y:X}",
    OpKind.LD_BYTE: "LD V{x:X}, {value:#04x}",
    OpKind.ADD_BYTE: "ADD V{x:X}, {value:#04x}",
    OpKind.LD_REG: "LD V{x:X}, V{y:X}",
    OpKind.OR: "OR V{x:X}, V{y:X}",
    OpKind.AND: "AND V{x:X}, V{y:X}",
    OpKind.XOR: "XOR V{x:X}, V{y:X}",
    OpKind.ADD_REG: "ADD V{x:X}, V{y:X}",
    OpKind.SUB: "SUB V{x:X}, V{y:X}",
    OpKind.SHR: "SHR V{x:X}",
    OpKind.SUBN: "SUBN V{x:X}, V{y:X}",
    OpKind.SHL: "SHL V{x:X}",
    OpKind.SNE_REG: "SNE V{x:X}, V{y:X}",
    OpKind.LD_I: "LD I, {address:#05x}",
    OpKind.JP_V0: "JP V0, {address:#05x}",
    OpKind.RND: "RND V{x:X}, {value:#04x}",
    OpKind.DRW: "DRW V{x:X}, V{y:X}, {value}",
    OpKind.SKP: "SKP V{x:X}",
    OpKind.SKNP: "SKNP V{x:X}",
    OpKind.LD_VX_DT: "LD V{x:X}, DT",
    OpKind.LD_VX_K: "LD V{x:X}, K",
    OpKind.LD_DT_VX: "LD DT, V{x:X}",
    OpKind.LD_ST_VX: "LD ST, V{x:X}",
    OpKind.ADD_I: "ADD I, V{x:X}",
    OpKind.LD_F: "LD F, V{x:X}",
    OpKind.LD_B: "LD B, V{x:X}",
    OpKind.LD_MEM_REGS: "LD [I], V{x:X}",
    OpKind.LD_REGS_MEM: "LD V{x:X}, [I]",
}


@dataclass(frozen=True)
class Operation:
    """
    A decoded instruction.  Only the operand fields relevant to the kind are meaningful, the rest stay 0.
    x and y are register indices, value is an 8-bit immediate (or the sprite height for DRW), address is 12 bits.
    """
    kind: OpKind
    x: int = 0
    y: int = 0
    value: int = 0
    address: int = 0

    def __str__(self) -> str:
        return MNEMONICS[self.kind].format(x=self.x, y=self.y, value=self.value, address=self.address)


# Opcodes selected by the low nibble within the 0x8 family.
REGISTER_FAMILY = {
    0x0: OpKind.LD_REG,
    0x1: OpKind.OR,
    0x2: OpKind.AND,
    0x3: OpKind.XOR,
    0x4: OpKind.ADD_REG,
    0x5: OpKind.SUB,
    0x6: OpKind.SHR,
    0x7: OpKind.SUBN,
    0xe: OpKind.SHL,
}

# Opcodes selected by the low byte within the 0xE family.
KEY_FAMILY = {
    0x9e: OpKind.SKP,
    0xa1: OpKind.SKNP,
}

# Opcodes selected by the low byte within the 0xF family.
MISC_FAMILY = {
    0x07: OpKind.LD_VX_DT,
    0x0a: OpKind.LD_VX_K,
    0x15: OpKind.LD_DT_VX,
    0x18: OpKind.LD_ST_VX,
    0x1e: OpKind.ADD_I,
    0x29: OpKind.LD_F,
    0x33: OpKind.LD_B,
    0x55: OpKind.LD_MEM_REGS,
    0x65: OpKind.LD_REGS_MEM,
}


def get_upper_char(byte: int) -> int:
    """
    Get the upper character (first 4 bits) of the given byte.
    :param byte: The byte from which to extract the character.
    :return: The upper character.
    """
    return (byte & UPPER_CHAR_MASK) >> 4


def get_lower_char(byte: int) -> int:
    """
    Get the lower character (last 4 bits) of the given byte.
    :param byte: The byte from which to extract the character.
    :return: The lower character.
    """
    return byte & LOWER_CHAR_MASK


def get_word(code: bytes) -> int:
    """
    Combine an instruction's two bytes into its big-endian 16-bit word.
    """
    return (code[0] << 8) | code[1]


def decode(code: bytes) -> Operation:
    """
    Decode a single instruction.  Decoding has no side effects.
    :param code: The two bytes of the instruction, most significant first.
    :return: The structured operation.
    """
    if len(code) != INSTRUCTION_SIZE:
        raise ValueError(f"An instruction is exactly {INSTRUCTION_SIZE} bytes, got {len(code)}.")

    word = get_word(code)
    first_char = get_upper_char(code[0])
    x = get_lower_char(code[0])
    y = get_upper_char(code[1])
    last_char = get_lower_char(code[1])
    byte = code[1]
    address = word & ADDRESS_MASK

    if first_char == 0:
        if word == 0x00e0:
            return Operation(OpKind.CLS)
        if word == 0x00ee:
            return Operation(OpKind.RET)
        return Operation(OpKind.SYS, address=address)
    if first_char == 1:
        return Operation(OpKind.JP, address=address)
    if first_char == 2:
        return Operation(OpKind.CALL, address=address)
    if first_char == 3:
        return Operation(OpKind.SE_BYTE, x=x, value=byte)
    if first_char == 4:
        return Operation(OpKind.SNE_BYTE, x=x, value=byte)
    if first_char == 5 and last_char == 0:
        return Operation(OpKind.SE_REG, x=x, y=y)
    if first_char == 6:
        return Operation(OpKind.LD_BYTE, x=x, value=byte)
    if first_char == 7:
        return Operation(OpKind.ADD_BYTE, x=x, value=byte)
    if first_char == 8 and last_char in REGISTER_FAMILY:
        return Operation(REGISTER_FAMILY[last_char], x=x, y=y)
    if first_char == 9 and last_char == 0:
        return Operation(OpKind.SNE_REG, x=x, y=y)
    if first_char == 10:
        return Operation(OpKind.LD_I, address=address)
    if first_char == 11:
        return Operation(OpKind.JP_V0, address=address)
    if first_char == 12:
        return Operation(OpKind.RND, x=x, value=byte)
    if first_char == 13:
        return Operation(OpKind.DRW, x=x, y=y, value=last_char)
    if first_char == 14 and byte in KEY_FAMILY:
        return Operation(KEY_FAMILY[byte], x=x)
    if first_char == 15 and byte in MISC_FAMILY:
        return Operation(MISC_FAMILY[byte], x=x)

    raise UnknownOpcodeError(word)


def disassemble(program: bytes, origin: int = 0x200) -> Iterator[Tuple[int, int, Optional[Operation]]]:
    """
    Walk a program image two bytes at a time.
    :param program: The raw program bytes.
    :param origin: The address the first byte is loaded at.
    :return: (address, word, operation) for each complete word; operation is None for words which do not decode.
    """
    for offset in range(0, len(program) - 1, INSTRUCTION_SIZE):
        code = bytes(program[offset:offset + INSTRUCTION_SIZE])
        try:
            operation = decode(code)
        except UnknownOpcodeError:
            operation = None
        yield origin + offset, get_word(code), operation
