
"""Host-side client for the Bitcoin app of a hardware signing device"""

from .client import BitcoinClient, MessageSignature, PartialSignature, SignatureType, create_client
from .client_command import ClientCommandInterpreter
from .common import Chain
from .transport import StatusWord, Transport, TransportClient
from .verifier import AddressVerifier, DescriptorAddressVerifier

from .wallet import AddressType, WalletPolicy, MultisigWallet, WalletType

__version__ = '0.1.0'

__all__ = [
    "BitcoinClient",
    "MessageSignature",
    "PartialSignature",
    "SignatureType",
    "create_client",
    "ClientCommandInterpreter",
    "Chain",
    "StatusWord",
    "Transport",
    "TransportClient",
    "AddressVerifier",
    "DescriptorAddressVerifier",
    "AddressType",
    "WalletPolicy",
    "MultisigWallet",
    "WalletType"
]
