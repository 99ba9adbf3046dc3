from .device_exception import DeviceException
from .errors import *

__all__ = [
    "DeviceException",
    "BitcoinClientError",
    "TransportError",
    "ProtocolError",
    "UnexpectedResultError",
    "AddressMismatchError",
    "UnsupportedAppError",
    "InvalidInputError",
    "InvalidPsbtError",
    "DeviceError",
    "UnknownDeviceError",
    "DenyError",
    "IncorrectDataError",
    "NotSupportedError",
    "WrongP1P2Error",
    "WrongDataLengthError",
    "InsNotSupportedError",
    "ClaNotSupportedError",
    "WrongResponseLengthError",
    "BadStateError",
    "SignatureFailError",
    "InterruptedExecution",
]
