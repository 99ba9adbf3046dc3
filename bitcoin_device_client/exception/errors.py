from typing import Union
from enum import IntEnum


class BitcoinClientError(Exception):
    """Base class of every error raised by the client."""


class TransportError(BitcoinClientError):
    """The byte channel failed; the current operation is aborted."""


class ProtocolError(BitcoinClientError):
    """The client could not answer a request of the device (unknown commitment, bad index, malformed request)."""


class UnexpectedResultError(BitcoinClientError):
    """The device completed the command, but its response is not valid for it."""

    def __init__(self, ins: Union[int, IntEnum, None], data: bytes, message: str = "") -> None:
        self.ins = ins
        self.data = data
        self.message = message or f"Unexpected result for {ins!r}: {data.hex()}"
        super().__init__(self.message)


class AddressMismatchError(UnexpectedResultError):
    """The address returned by the device differs from the one derived independently on the host."""


class UnsupportedAppError(UnexpectedResultError):
    """The app running on the device does not implement the protocol spoken by this client."""


class InvalidInputError(BitcoinClientError, ValueError):
    """The data supplied by the caller is inconsistent; detected before any exchange."""


class InvalidPsbtError(InvalidInputError):
    pass


class DeviceError(BitcoinClientError):
    """The device terminated the command with a non-success status word."""

    def __init__(self, status: int, ins: Union[int, IntEnum, None] = None, message: str = "") -> None:
        self.status = status
        self.ins = ins
        self.message = message
        error_message = f"Error in {ins!r} command" if ins is not None else "Error in command"
        super().__init__(hex(status), error_message, message)

    @property
    def sw(self) -> int:
        return self.status


class UnknownDeviceError(DeviceError):
    pass


class DenyError(DeviceError):
    pass


class IncorrectDataError(DeviceError):
    pass


class NotSupportedError(DeviceError):
    pass


class WrongP1P2Error(DeviceError):
    pass


class WrongDataLengthError(DeviceError):
    pass


class InsNotSupportedError(DeviceError):
    pass


class ClaNotSupportedError(DeviceError):
    pass


class WrongResponseLengthError(DeviceError):
    pass


class BadStateError(DeviceError):
    pass


class SignatureFailError(DeviceError):
    pass


class InterruptedExecution(DeviceError):
    pass
