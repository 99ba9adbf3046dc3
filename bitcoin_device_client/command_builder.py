import enum
import struct
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Union

from .common import bip32_path_from_string, write_varint
from .exception.errors import InvalidInputError
from .wallet import WalletPolicy

# p2 encodes the protocol version implemented
CURRENT_PROTOCOL_VERSION = 1


class DefaultInsType(enum.IntEnum):
    GET_VERSION = 0x01


class BitcoinInsType(enum.IntEnum):
    GET_EXTENDED_PUBKEY = 0x00
    REGISTER_WALLET = 0x02
    GET_WALLET_ADDRESS = 0x03
    SIGN_PSBT = 0x04
    GET_MASTER_FINGERPRINT = 0x05
    SIGN_MESSAGE = 0x10


class FrameworkInsType(enum.IntEnum):
    CONTINUE_INTERRUPTED = 0x01


@dataclass(frozen=True)
class APDUCommand:
    cla: int
    ins: Union[int, enum.IntEnum]
    p1: int = 0
    p2: int = CURRENT_PROTOCOL_VERSION
    data: bytes = b""

    def serialize(self) -> bytes:
        """Serialize the whole APDU command (header + data)."""
        if len(self.data) > 255:
            raise InvalidInputError(f"APDU data too long: {len(self.data)} bytes")

        header: bytes = struct.pack("BBBBB",
                                    self.cla,
                                    int(self.ins),
                                    self.p1,
                                    self.p2,
                                    len(self.data))  # add Lc to APDU header
        return header + self.data


class PsbtCommitments(NamedTuple):
    """The commitments to a flattened PSBT that are sent with the SIGN_PSBT command."""
    global_commitment: bytes
    n_inputs: int
    inputs_root: bytes
    n_outputs: int
    outputs_root: bytes


class BitcoinCommandBuilder:
    """APDU command builder for the Bitcoin application."""

    CLA_DEFAULT: int = 0xB0
    CLA_BITCOIN: int = 0xE1
    CLA_FRAMEWORK: int = 0xF8

    def serialize(
        self,
        cla: int,
        ins: Union[int, enum.IntEnum],
        p1: int = 0,
        p2: int = CURRENT_PROTOCOL_VERSION,
        cdata: bytes = b"",
    ) -> APDUCommand:
        """Build the APDU command (header + data).

        Parameters
        ----------
        cla : int
            Instruction class: CLA (1 byte)
        ins : Union[int, IntEnum]
            Instruction code: INS (1 byte)
        p1 : int
            Instruction parameter 1: P1 (1 byte).
        p2 : int
            Instruction parameter 2: P2 (1 byte).
        cdata : bytes
            Bytes of command data.

        Returns
        -------
        APDUCommand
            The immutable APDU message.

        """

        return APDUCommand(cla=cla, ins=ins, p1=p1, p2=p2, data=cdata)

    def get_version(self) -> APDUCommand:
        return self.serialize(
            cla=self.CLA_DEFAULT,
            ins=DefaultInsType.GET_VERSION,
            p2=0,
        )

    def get_extended_pubkey(self, bip32_path: str, display: bool = False) -> APDUCommand:
        bip32_path: List[bytes] = bip32_path_from_string(bip32_path)

        cdata: bytes = b"".join([
            b'\1' if display else b'\0',
            len(bip32_path).to_bytes(1, byteorder="big"),
            *bip32_path
        ])

        return self.serialize(
            cla=self.CLA_BITCOIN,
            ins=BitcoinInsType.GET_EXTENDED_PUBKEY,
            cdata=cdata,
        )

    def register_wallet(self, wallet: WalletPolicy) -> APDUCommand:
        wallet_bytes = wallet.serialize()

        return self.serialize(
            cla=self.CLA_BITCOIN,
            ins=BitcoinInsType.REGISTER_WALLET,
            cdata=write_varint(len(wallet_bytes)) + wallet_bytes,
        )

    def get_wallet_address(
        self,
        wallet: WalletPolicy,
        wallet_hmac: Optional[bytes],
        address_index: int,
        change: bool,
        display: bool,
    ) -> APDUCommand:
        cdata: bytes = b"".join(
            [
                b'\1' if display else b'\0',                            # 1 byte
                wallet.id,                                              # 32 bytes
                wallet_hmac if wallet_hmac is not None else b'\0' * 32, # 32 bytes
                b"\1" if change else b"\0",                             # 1 byte
                address_index.to_bytes(4, byteorder="big"),             # 4 bytes
            ]
        )

        return self.serialize(
            cla=self.CLA_BITCOIN,
            ins=BitcoinInsType.GET_WALLET_ADDRESS,
            cdata=cdata,
        )

    def sign_psbt(
        self,
        commitments: PsbtCommitments,
        wallet: WalletPolicy,
        wallet_hmac: Optional[bytes],
    ) -> APDUCommand:

        cdata = bytearray()
        cdata += commitments.global_commitment

        cdata += write_varint(commitments.n_inputs)
        cdata += commitments.inputs_root

        cdata += write_varint(commitments.n_outputs)
        cdata += commitments.outputs_root

        cdata += wallet.id
        cdata += wallet_hmac if wallet_hmac is not None else b'\0' * 32

        return self.serialize(
            cla=self.CLA_BITCOIN, ins=BitcoinInsType.SIGN_PSBT, cdata=bytes(cdata)
        )

    def get_master_fingerprint(self) -> APDUCommand:
        return self.serialize(
            cla=self.CLA_BITCOIN,
            ins=BitcoinInsType.GET_MASTER_FINGERPRINT
        )

    def sign_message(self, message_length: int, message_root: bytes, bip32_path: str) -> APDUCommand:
        cdata = bytearray()

        bip32_path: List[bytes] = bip32_path_from_string(bip32_path)

        cdata += len(bip32_path).to_bytes(1, byteorder="big")
        cdata += b''.join(bip32_path)

        cdata += write_varint(message_length)

        cdata += message_root

        return self.serialize(
            cla=self.CLA_BITCOIN,
            ins=BitcoinInsType.SIGN_MESSAGE,
            cdata=bytes(cdata)
        )

    def continue_interrupted(self, cdata: bytes) -> APDUCommand:
        """Command builder for CONTINUE.

        Returns
        -------
        APDUCommand
            APDU command for CONTINUE.

        """
        return self.serialize(
            cla=self.CLA_FRAMEWORK,
            ins=FrameworkInsType.CONTINUE_INTERRUPTED,
            cdata=cdata,
        )
