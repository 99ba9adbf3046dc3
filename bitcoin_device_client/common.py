from io import BytesIO
from typing import List, Optional, Literal
from enum import Enum

import hashlib

from embit.networks import NETWORKS

from .exception.errors import InvalidInputError

UINT64_MAX: int = 18446744073709551615
UINT32_MAX: int = 4294967295
UINT16_MAX: int = 65535

MAX_BIP32_PATH_LEN: int = 10

HARDENED_INDEX: int = 0x80000000


# from bitcoin-core/HWI
class Chain(Enum):
    """
    The blockchain network to use
    """
    MAIN = 0 #: Bitcoin Main network
    TEST = 1 #: Bitcoin Test network
    REGTEST = 2 #: Bitcoin Core Regression Test network
    SIGNET = 3 #: Bitcoin Signet

    def __str__(self) -> str:
        return self.name.lower()

    def __repr__(self) -> str:
        return str(self)

    @property
    def network(self) -> dict:
        """The embit network parameters used to encode addresses and keys on this chain."""
        return NETWORKS[{
            Chain.MAIN: "main",
            Chain.TEST: "test",
            Chain.REGTEST: "regtest",
            Chain.SIGNET: "signet",
        }[self]]


def bip32_path_from_string(path: str) -> List[bytes]:
    splitted_path: List[str] = path.split("/")

    if splitted_path[0] == "m":
        splitted_path = splitted_path[1:]

    if splitted_path in ([], [""]):
        return []

    if len(splitted_path) > MAX_BIP32_PATH_LEN:
        raise InvalidInputError(f"BIP32 path too long: '{path}'")

    result: List[bytes] = []
    for step in splitted_path:
        hardened = step.endswith("'") or step.endswith("h")
        digits = step[:-1] if hardened else step

        if not digits.isdigit() or int(digits) >= HARDENED_INDEX:
            raise InvalidInputError(f"BIP32 path format error: '{path}'")

        index = int(digits) | (HARDENED_INDEX if hardened else 0)
        result.append(index.to_bytes(4, byteorder="big"))

    return result


def write_varint(n: int) -> bytes:
    if n <= 0xFC:
        return n.to_bytes(1, byteorder="little")

    if n <= UINT16_MAX:
        return b"\xFD" + n.to_bytes(2, byteorder="little")

    if n <= UINT32_MAX:
        return b"\xFE" + n.to_bytes(4, byteorder="little")

    if n <= UINT64_MAX:
        return b"\xFF" + n.to_bytes(8, byteorder="little")

    raise ValueError(f"Can't write to varint: '{n}'!")


def read_varint(buf: BytesIO,
                prefix: Optional[bytes] = None) -> int:
    b: bytes = prefix if prefix else buf.read(1)

    if not b:
        raise ValueError(f"Can't read prefix: '{b}'!")

    n: int = {b"\xfd": 2, b"\xfe": 4, b"\xff": 8}.get(b, 1)  # default to 1

    b = buf.read(n) if n > 1 else b

    if len(b) != n:
        raise ValueError("Can't read varint!")

    return int.from_bytes(b, byteorder="little")


def read_uint(buf: BytesIO,
              bit_len: int,
              byteorder: Literal['big', 'little'] = 'little') -> int:
    size: int = bit_len // 8
    b: bytes = buf.read(size)

    if len(b) < size:
        raise ValueError(f"Can't read u{bit_len} in buffer!")

    return int.from_bytes(b, byteorder)


def serialize_str(value: str) -> bytes:
    return len(value.encode("latin-1")).to_bytes(1, byteorder="big") + value.encode("latin-1")


def sha256(s: bytes) -> bytes:
    return hashlib.new('sha256', s).digest()


class ByteStreamParser:
    def __init__(self, input: bytes):
        self.stream = BytesIO(input)

    def assert_empty(self) -> None:
        if self.stream.read(1) != b'':
            raise ValueError("Byte stream was expected to be empty")

    def read_bytes(self, n: int) -> bytes:
        result = self.stream.read(n)
        if len(result) < n:
            raise ValueError("Byte stream exhausted")
        return result

    def read_uint(self, n: int, byteorder: Literal['big', 'little'] = "big") -> int:
        return int.from_bytes(self.read_bytes(n), byteorder)

    def read_varint(self) -> int:
        prefix = self.read_uint(1)

        if prefix == 253:
            return self.read_uint(2, 'little')
        elif prefix == 254:
            return self.read_uint(4, 'little')
        elif prefix == 255:
            return self.read_uint(8, 'little')
        else:
            return prefix

    def read_remaining(self) -> bytes:
        return self.stream.read()
