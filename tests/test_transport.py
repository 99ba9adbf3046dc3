import asyncio

from bitcoin_device_client import BitcoinClient, StatusWord, TransportClient
from bitcoin_device_client.command_builder import APDUCommand

MESSAGE_SIGNATURE = bytes([31]) + (1).to_bytes(32, byteorder="big") + (2).to_bytes(32, byteorder="big")


class FakeLedgerComm:
    """Records the calls made through the ledgercomm interface."""

    def __init__(self):
        self.calls = []
        self.closed = False

    def exchange(self, cla, ins, p1=0, p2=0, option=None, cdata=b""):
        self.calls.append((cla, ins, p1, p2, option, cdata))
        return 0x9000, bytearray(cdata[::-1])

    def close(self):
        self.closed = True


class FakeInterruptingDevice(FakeLedgerComm):
    """Interrupts every app command twice with a YIELD before answering with a message signature.

    A new app command received while a command is interrupted fails with BAD_STATE, as on the device.
    """

    def __init__(self):
        super().__init__()
        self.pending = None

    def exchange(self, cla, ins, p1=0, p2=0, option=None, cdata=b""):
        self.calls.append((cla, ins, p1, p2, option, cdata))

        if cla == 0xE1:
            if self.pending is not None:
                return StatusWord.BAD_STATE, bytearray()
            self.pending = 2
        elif self.pending is None:
            return StatusWord.BAD_STATE, bytearray()

        if self.pending > 0:
            self.pending -= 1
            return StatusWord.INTERRUPTED_EXECUTION, bytearray(b"\x10\x00")

        self.pending = None
        return StatusWord.OK, bytearray(MESSAGE_SIGNATURE)


def test_exchange():
    fake = FakeLedgerComm()
    transport = TransportClient(transport=fake)

    sw, data = asyncio.run(transport.exchange(APDUCommand(cla=0xE1, ins=0x05, p1=0, p2=1, data=b"\x01\x02")))

    assert sw == StatusWord.OK
    assert data == b"\x02\x01"
    assert isinstance(data, bytes)
    assert fake.calls == [(0xE1, 0x05, 0, 1, None, b"\x01\x02")]


def test_concurrent_exchanges_are_serialized():
    fake = FakeLedgerComm()
    transport = TransportClient(transport=fake)

    async def run():
        return await asyncio.gather(*[
            transport.exchange(APDUCommand(cla=0xE1, ins=0x05, data=bytes([i]))) for i in range(5)
        ])

    results = asyncio.run(run())

    assert [data for _, data in results] == [bytes([i]) for i in range(5)]
    assert len(fake.calls) == 5


def test_close():
    fake = FakeLedgerComm()
    TransportClient(transport=fake).close()

    assert fake.closed


def test_concurrent_operations_do_not_interleave():
    fake = FakeInterruptingDevice()
    client = BitcoinClient(TransportClient(transport=fake))

    async def run():
        return await asyncio.gather(
            client.sign_message("first", "m/44'/1'/0'/0/0"),
            client.sign_message("second", "m/44'/1'/0'/0/1"),
        )

    results = asyncio.run(run())

    assert [sig.header for sig in results] == [31, 31]
    assert [cla for cla, *_ in fake.calls] == [0xE1, 0xF8, 0xF8, 0xE1, 0xF8, 0xF8]


def test_session_is_exclusive():
    transport = TransportClient(transport=FakeLedgerComm())
    events = []

    async def operation(name: str):
        async with transport.session():
            events.append(f"{name} start")
            await asyncio.sleep(0)
            events.append(f"{name} end")

    async def run():
        await asyncio.gather(operation("a"), operation("b"))

    asyncio.run(run())

    assert events == ["a start", "a end", "b start", "b end"]
