from typing import Protocol

from embit.descriptor import Descriptor

from .common import Chain
from .exception.errors import AddressMismatchError
from .command_builder import BitcoinInsType
from .wallet import WalletPolicy

INVALID_ADDRESS_MESSAGE = "Invalid address. Please update your Bitcoin app."


class AddressVerifier(Protocol):
    """Independently checks an address returned by the device for a wallet policy."""

    def verify(self, wallet: WalletPolicy, change: bool, address_index: int, address: str) -> None:
        ...


class DescriptorAddressVerifier:
    """Derives the address from the descriptor of the wallet policy, and compares it with the device's one.

    Fails closed: a descriptor that cannot be parsed or derived counts as a mismatch.
    """

    def __init__(self, chain: Chain = Chain.MAIN) -> None:
        self.chain = chain

    def derive_address(self, wallet: WalletPolicy, change: bool, address_index: int) -> str:
        desc = Descriptor.from_string(wallet.get_descriptor(change))
        return desc.derive(address_index).address(self.chain.network)

    def verify(self, wallet: WalletPolicy, change: bool, address_index: int, address: str) -> None:
        try:
            expected = self.derive_address(wallet, change, address_index)
        except Exception as e:
            raise AddressMismatchError(
                BitcoinInsType.GET_WALLET_ADDRESS, address.encode(), f"Failed to derive the address: {e}"
            ) from e

        if expected != address:
            raise AddressMismatchError(BitcoinInsType.GET_WALLET_ADDRESS, address.encode(), INVALID_ADDRESS_MESSAGE)
