import pytest

from bitcoin_device_client.command_builder import BitcoinInsType
from bitcoin_device_client.exception import (
    BitcoinClientError,
    DenyError,
    DeviceError,
    DeviceException,
    IncorrectDataError,
    InterruptedExecution,
    InvalidInputError,
    InvalidPsbtError,
    NotSupportedError,
    SignatureFailError,
    UnknownDeviceError,
)


@pytest.mark.parametrize("sw,error_class", [
    (0x6985, DenyError),
    (0x6A80, IncorrectDataError),
    (0x6A82, NotSupportedError),
    (0xB008, SignatureFailError),
    (0xE000, InterruptedExecution),
    (0x6F00, UnknownDeviceError),
])
def test_device_exception(sw: int, error_class):
    error = DeviceException(error_code=sw, ins=BitcoinInsType.SIGN_PSBT)

    assert type(error) is error_class
    assert isinstance(error, DeviceError)
    assert isinstance(error, BitcoinClientError)
    assert error.status == error.sw == sw
    assert error.ins == BitcoinInsType.SIGN_PSBT


def test_device_exception_can_be_raised():
    with pytest.raises(DenyError):
        raise DeviceException(error_code=0x6985)


def test_input_errors_are_value_errors():
    assert issubclass(InvalidInputError, ValueError)
    assert issubclass(InvalidPsbtError, InvalidInputError)
