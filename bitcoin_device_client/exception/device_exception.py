from typing import Dict, Type, Union
from enum import IntEnum

from .errors import *


class DeviceException:  # pylint: disable=too-few-public-methods
    """Builds the DeviceError subclass matching a status word.

    ``DeviceException(error_code=sw, ins=ins)`` returns an instance of the
    error registered for ``sw``, or of ``UnknownDeviceError``.
    """

    exc: Dict[int, Type[DeviceError]] = {
        0x6985: DenyError,
        0x6A80: IncorrectDataError,
        0x6A82: NotSupportedError,
        0x6A86: WrongP1P2Error,
        0x6A87: WrongDataLengthError,
        0x6D00: InsNotSupportedError,
        0x6E00: ClaNotSupportedError,
        0xB000: WrongResponseLengthError,
        0xB007: BadStateError,
        0xB008: SignatureFailError,
        0xE000: InterruptedExecution,
    }

    def __new__(cls,
                error_code: int,
                ins: Union[int, IntEnum, None] = None,
                message: str = ""
                ) -> DeviceError:
        error_class = DeviceException.exc.get(error_code, UnknownDeviceError)
        return error_class(error_code, ins, message)
