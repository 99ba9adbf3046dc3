import asyncio
from contextlib import asynccontextmanager, nullcontext
from enum import IntEnum
from typing import AsyncContextManager, AsyncIterator, Optional, Protocol, Tuple

from ledgercomm import Transport as LedgerCommTransport

from .command_builder import APDUCommand


class StatusWord(IntEnum):
    OK = 0x9000
    INTERRUPTED_EXECUTION = 0xE000
    DENY = 0x6985
    INCORRECT_DATA = 0x6A80
    NOT_SUPPORTED = 0x6A82
    WRONG_P1P2 = 0x6A86
    WRONG_DATA_LENGTH = 0x6A87
    INS_NOT_SUPPORTED = 0x6D00
    CLA_NOT_SUPPORTED = 0x6E00
    WRONG_RESPONSE_LENGTH = 0xB000
    BAD_STATE = 0xB007
    SIGNATURE_FAIL = 0xB008


class Transport(Protocol):
    """Communication layer between the client and the device.

    `exchange` sends one command and returns the status word and the response data. It must keep exchanges in order,
    and accept a single outstanding command at a time.

    A transport shared by concurrent operations can also provide `session()`, an async context manager that the
    client holds for the whole of each operation, including every CONTINUE_INTERRUPTED exchange.
    """

    async def exchange(self, command: APDUCommand) -> Tuple[int, bytes]:
        ...


def transport_session(transport: Transport) -> AsyncContextManager:
    """Returns the `session()` of `transport`, or a context that does nothing if it has none."""
    session = getattr(transport, "session", None)
    if session is None:
        return nullcontext()
    return session()


class TransportClient:
    """Transport to a physical device (``interface="hid"``) or an emulator (``interface="tcp"``) built on ledgercomm.

    ledgercomm is blocking, so each exchange runs in the default executor. Single exchanges are serialized, and
    `session()` reserves the device for a whole operation so that concurrent operations never interleave while the
    device is in the middle of an interrupted command.
    """

    def __init__(self,
                 interface: str = "tcp",
                 *,
                 server: str = "127.0.0.1",
                 port: int = 9999,
                 debug: bool = False,
                 transport: Optional[LedgerCommTransport] = None):
        self.transport = transport if transport is not None else LedgerCommTransport(
            interface=interface, server=server, port=port, debug=debug)
        self._exchange_lock = asyncio.Lock()
        self._session_lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[None]:
        async with self._session_lock:
            yield

    async def exchange(self, command: APDUCommand) -> Tuple[int, bytes]:
        async with self._exchange_lock:
            loop = asyncio.get_running_loop()
            sw, data = await loop.run_in_executor(
                None,
                lambda: self.transport.exchange(command.cla, command.ins, command.p1, command.p2, None, command.data)
            )
        return sw, bytes(data)

    def close(self) -> None:
        self.transport.close()
