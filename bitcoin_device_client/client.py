import base64
import logging
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import List, NamedTuple, Optional, Tuple, Union

from packaging.version import InvalidVersion, parse as parse_version

from embit import ec
from embit.base import EmbitError
from embit.bip32 import HDKey
from embit.psbt import PSBT
from embit.script import address_to_scriptpubkey

from .client_command import ClientCommandInterpreter
from .command_builder import APDUCommand, BitcoinCommandBuilder, DefaultInsType
from .common import ByteStreamParser, Chain, read_varint
from .exception import (
    BitcoinClientError,
    DeviceException,
    InvalidInputError,
    ProtocolError,
    TransportError,
    UnexpectedResultError,
    UnsupportedAppError,
)
from .psbt import normalize_psbt, register_psbt
from .transport import StatusWord, Transport, transport_session
from .verifier import AddressVerifier, DescriptorAddressVerifier
from .wallet import WalletPolicy, WalletType

logger = logging.getLogger(__name__)

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

LEGACY_APP_NAMES = ["Bitcoin Legacy", "Bitcoin Test Legacy"]

MAX_ADDRESS_INDEX = 0x7FFFFFFF


class RequestState(Enum):
    RUNNING = "running"
    AWAITING_SUBREQUEST = "awaiting_subrequest"
    DONE = "done"
    FAILED = "failed"


class SignatureType(Enum):
    ECDSA = "ecdsa"
    SCHNORR = "schnorr"


@dataclass
class PartialSignature:
    """Represents a partial signature returned by sign_psbt.

    The signature is in the format it would be pushed on the scriptSig or the witness stack, therefore of variable
    length, and the sighash flag is included: either a DER-encoded ECDSA signature followed by the sighash byte, or a
    64-byte Schnorr signature, followed by the sighash byte unless it is SIGHASH_DEFAULT.
    """
    signature: bytes
    type: SignatureType

    @property
    def sighash(self) -> int:
        if self.type == SignatureType.SCHNORR and len(self.signature) == 64:
            return 0x00  # SIGHASH_DEFAULT
        return self.signature[-1]


class MessageSignature(NamedTuple):
    """Result of sign_message: the header byte (31-34 for P2PKH compressed keys) and the 64-byte compact signature."""
    header: int
    signature: bytes

    def to_base64(self) -> str:
        return base64.b64encode(bytes([self.header]) + self.signature).decode("utf-8")


def _is_valid_ecdsa_signature(signature: bytes) -> bool:
    # DER-encoded signature, followed by the sighash byte
    if len(signature) < 2:
        return False
    try:
        ec.Signature.parse(signature[:-1])
    except (EmbitError, ValueError, IndexError):
        return False
    return True


def _is_valid_schnorr_signature(signature: bytes) -> bool:
    # 64 bytes for SIGHASH_DEFAULT, otherwise followed by an explicit non-zero sighash byte
    return len(signature) == 64 or (len(signature) == 65 and signature[64] != 0)


def _make_partial_signature(signature: bytes) -> PartialSignature:
    if _is_valid_ecdsa_signature(signature):
        return PartialSignature(signature=signature, type=SignatureType.ECDSA)

    if _is_valid_schnorr_signature(signature):
        return PartialSignature(signature=signature, type=SignatureType.SCHNORR)

    raise ValueError(f"Invalid signature encoding ({len(signature)} bytes)")


def _check_wallet(wallet: WalletPolicy, wallet_hmac: Optional[bytes] = None) -> None:
    if not isinstance(wallet, WalletPolicy) or wallet.version not in [WalletType.WALLET_POLICY_V1, WalletType.WALLET_POLICY_V2]:
        raise InvalidInputError("wallet type must be WalletPolicy, with version either WALLET_POLICY_V1 or WALLET_POLICY_V2")

    if wallet_hmac is not None and len(wallet_hmac) != 32:
        raise InvalidInputError("The wallet hmac must be 32 bytes long")


class BitcoinClient:
    """Client of the Bitcoin app.

    Every method is a coroutine performing one logical operation; commands that need data from the client run the
    interrupt/resume loop of `_make_request` with a `ClientCommandInterpreter` created for that single call.

    Parameters
    ----------
    transport : Transport
        The channel to the device.
    chain : Chain
        The network, used to encode and verify addresses.
    debug : bool
        Log every APDU at INFO level instead of DEBUG.
    verify_addresses : bool
        Check every address returned by the device with `address_verifier`.
    address_verifier : Optional[AddressVerifier]
        Defaults to a `DescriptorAddressVerifier` for `chain`.
    max_interrupts : Optional[int]
        If set, a command interrupted more than this number of times fails with a `ProtocolError`.
    """

    def __init__(self,
                 transport: Transport,
                 chain: Chain = Chain.MAIN,
                 debug: bool = False,
                 verify_addresses: bool = False,
                 address_verifier: Optional[AddressVerifier] = None,
                 max_interrupts: Optional[int] = None) -> None:
        self.transport = transport
        self.chain = chain
        self.debug = debug
        self.verify_addresses = verify_addresses
        self.address_verifier = address_verifier if address_verifier is not None else DescriptorAddressVerifier(chain)
        self.max_interrupts = max_interrupts
        self.builder = BitcoinCommandBuilder()

    def _log(self, msg: str, *args) -> None:
        logger.log(logging.INFO if self.debug else logging.DEBUG, msg, *args)

    async def _apdu_exchange(self, apdu: APDUCommand) -> Tuple[int, bytes]:
        self._log("=> %02x%02x%02x%02x %s", apdu.cla, apdu.ins, apdu.p1, apdu.p2, apdu.data.hex())

        try:
            sw, response = await self.transport.exchange(apdu)
        except BitcoinClientError:
            raise
        except Exception as e:
            raise TransportError(f"Exchange failed for command {apdu.ins!r}: {e}") from e

        self._log("<= %s %04x", response.hex(), sw)

        return sw, response

    async def _make_request(
        self, apdu: APDUCommand, client_interpreter: Optional[ClientCommandInterpreter] = None
    ) -> bytes:
        """Sends `apdu`, answering the client commands of the device with `client_interpreter` until completion.

        The whole exchange runs within one session of the transport, if it provides one.

        Returns the response of the device on success. Raises the `DeviceError` matching the final status word
        otherwise, or `ProtocolError` if a client command could not be answered.
        """
        state = RequestState.RUNNING
        n_interrupts = 0

        async with transport_session(self.transport):
            sw, response = await self._apdu_exchange(apdu)

            while state == RequestState.RUNNING:
                if sw == StatusWord.OK:
                    state = RequestState.DONE
                elif sw == StatusWord.INTERRUPTED_EXECUTION and client_interpreter is not None:
                    state = RequestState.AWAITING_SUBREQUEST

                    n_interrupts += 1
                    if self.max_interrupts is not None and n_interrupts > self.max_interrupts:
                        raise ProtocolError(f"Command {apdu.ins!r} interrupted more than {self.max_interrupts} times")

                    command_response = client_interpreter.execute(response)

                    state = RequestState.RUNNING
                    sw, response = await self._apdu_exchange(
                        self.builder.continue_interrupted(command_response)
                    )
                else:
                    state = RequestState.FAILED

        logger.debug("command %r: %s after %d interruptions", apdu.ins, state.value, n_interrupts)

        if state == RequestState.FAILED:
            raise DeviceException(error_code=sw, ins=apdu.ins)

        return response

    async def get_version(self) -> Tuple[str, str, bytes]:
        """Returns the name and version of the running app, and its state flags."""
        cmd = self.builder.get_version()
        response = await self._make_request(cmd)

        try:
            r = ByteStreamParser(response)
            if r.read_uint(1) != 0x01:
                raise ValueError("Unsupported format")

            app_name = r.read_bytes(r.read_uint(1)).decode("ascii")
            app_version = r.read_bytes(r.read_uint(1)).decode("ascii")
            app_flags = r.read_bytes(r.read_uint(1))
        except ValueError as e:
            raise UnexpectedResultError(cmd.ins, response, f"Invalid version response: {e}") from e

        return app_name, app_version, app_flags

    async def get_master_fingerprint(self) -> bytes:
        """Gets the fingerprint of the master public key, as per BIP-32.

        Returns
        -------
        bytes
            The fingerprint of the master public key, as an array of 4 bytes.
        """
        cmd = self.builder.get_master_fingerprint()
        response = await self._make_request(cmd)

        if len(response) != 4:
            raise UnexpectedResultError(cmd.ins, response, f"Invalid fingerprint length: {len(response)}")

        return response

    async def get_extended_pubkey(self, path: str, display: bool = False) -> HDKey:
        """Gets the extended public key for the BIP-32 `path`, optionally showing it on the device screen."""
        cmd = self.builder.get_extended_pubkey(path, display)
        response = await self._make_request(cmd)

        try:
            xpub = HDKey.from_string(response.decode("ascii"))
        except (EmbitError, ValueError, IndexError, KeyError) as e:
            raise UnexpectedResultError(cmd.ins, response, "Invalid extended public key") from e

        if xpub.is_private:
            raise UnexpectedResultError(cmd.ins, response, "The device returned a private key")

        return xpub

    def _make_wallet_interpreter(self, wallet: WalletPolicy) -> ClientCommandInterpreter:
        client_interpreter = ClientCommandInterpreter()
        client_interpreter.add_known_preimage(wallet.serialize())
        client_interpreter.add_known_pubkey_list(wallet.keys_info)

        # necessary for version 1 of the protocol (introduced in version 2.1.0)
        client_interpreter.add_known_preimage(wallet.descriptor_template.encode())

        return client_interpreter

    async def register_wallet(self, wallet: WalletPolicy) -> Tuple[bytes, bytes]:
        """Registers a wallet policy with the user. After approval returns the wallet id and hmac to be stored on the client.

        Parameters
        ----------
        wallet : WalletPolicy
            The Wallet policy to register on the device.

        Returns
        -------
        Tuple[bytes, bytes]
            The first element the tuple is the 32-bytes wallet id.
            The second element is the hmac.
        """
        _check_wallet(wallet)

        client_interpreter = self._make_wallet_interpreter(wallet)

        cmd = self.builder.register_wallet(wallet)
        response = await self._make_request(cmd, client_interpreter)

        if len(response) != 64:
            raise UnexpectedResultError(cmd.ins, response, f"Invalid response length: {len(response)}")

        wallet_id = response[0:32]
        wallet_hmac = response[32:64]

        if wallet_id != wallet.id:
            raise UnexpectedResultError(cmd.ins, response, "The device returned a different wallet id")

        if self.verify_addresses:
            # get_wallet_address checks the address derived independently on the client
            await self.get_wallet_address(wallet, wallet_hmac, 0, 0, False)

        return wallet_id, wallet_hmac

    async def get_wallet_address(
        self,
        wallet: WalletPolicy,
        wallet_hmac: Optional[bytes],
        change: int,
        address_index: int,
        display: bool,
    ) -> str:
        """For a given wallet that was already registered on the device (or a standard wallet that does not need registration),
        returns the address for a certain `change`/`address_index` combination.

        Parameters
        ----------
        wallet : WalletPolicy
            The registered wallet policy, or a standard wallet policy.

        wallet_hmac: Optional[bytes]
            For a registered wallet, the hmac obtained at wallet registration. `None` for a standard wallet policy.

        change: int
            0 for a standard receive address, 1 for a change address. Other values are invalid.

        address_index: int
            The address index in the last step of the BIP32 derivation.

        display: bool
            Whether you want to display address and ask confirmation on the device.

        Returns
        -------
        str
            The requested address.
        """
        _check_wallet(wallet, wallet_hmac)

        if change != 0 and change != 1:
            raise InvalidInputError("Invalid change")

        if not 0 <= address_index <= MAX_ADDRESS_INDEX:
            raise InvalidInputError(f"Invalid address index: {address_index}")

        client_interpreter = self._make_wallet_interpreter(wallet)

        cmd = self.builder.get_wallet_address(wallet, wallet_hmac, address_index, change, display)
        response = await self._make_request(cmd, client_interpreter)

        try:
            result = response.decode("ascii")
            address_to_scriptpubkey(result)
        except (EmbitError, ValueError, IndexError, TypeError) as e:
            raise UnexpectedResultError(cmd.ins, response, "Invalid address") from e

        if self.verify_addresses:
            self.address_verifier.verify(wallet, bool(change), address_index, result)

        return result

    async def sign_psbt(self, psbt: Union[PSBT, bytes, str], wallet: WalletPolicy, wallet_hmac: Optional[bytes]) -> List[Tuple[int, PartialSignature]]:
        """Signs a PSBT using a registered wallet (or a standard wallet that does not need registration).

        Signature requires explicit approval from the user.

        Parameters
        ----------
        psbt : PSBT | bytes | str
            A PSBT of version 0 or 2, with all the necessary information to sign the inputs already filled in; what the
            required fields changes depending on the type of input.

        wallet : WalletPolicy
            The registered wallet policy, or a standard wallet policy.

        wallet_hmac: Optional[bytes]
            For a registered wallet, the hmac obtained at wallet registration. `None` for a standard wallet policy.

        Returns
        -------
        List[Tuple[int, PartialSignature]]
            The input index and the partial signature for each signature produced by the device, in the order they
            were returned.
        """
        _check_wallet(wallet, wallet_hmac)

        psbt = normalize_psbt(psbt)

        # We flatten the global map, each input map and each output map, producing their Merkleized map commitments.
        # Moreover, we prepare the client interpreter to respond on queries on all the relevant Merkle trees and
        # pre-images in the psbt.
        client_interpreter = self._make_wallet_interpreter(wallet)
        commitments = register_psbt(client_interpreter, psbt)

        cmd = self.builder.sign_psbt(commitments, wallet, wallet_hmac)
        await self._make_request(cmd, client_interpreter)

        # parse results and return a structured version instead
        results = client_interpreter.take_yielded()

        if any(len(x) <= 1 for x in results):
            raise UnexpectedResultError(cmd.ins, b"".join(results), "Invalid response")

        results_list: List[Tuple[int, PartialSignature]] = []
        for res in results:
            try:
                res_buffer = BytesIO(res)
                input_index = read_varint(res_buffer)

                if input_index >= commitments.n_inputs:
                    raise ValueError(f"Input index out of range: {input_index}")

                partial_signature = _make_partial_signature(res_buffer.read())
            except ValueError as e:
                raise UnexpectedResultError(cmd.ins, res, f"Invalid signature: {e}") from e

            results_list.append((input_index, partial_signature))

        return results_list

    async def sign_message(self, message: Union[str, bytes], bip32_path: str) -> MessageSignature:
        """Signs a message with the key derived at `bip32_path` (BIP-137 format).

        Returns
        -------
        MessageSignature
            The header byte and the compact signature; `to_base64()` gives the usual encoded signature.
        """
        if isinstance(message, str):
            message_bytes = message.encode("utf-8")
        else:
            message_bytes = message

        chunks = [message_bytes[64 * i: 64 * i + 64] for i in range((len(message_bytes) + 63) // 64)]

        client_interpreter = ClientCommandInterpreter()
        message_root = client_interpreter.add_known_list(chunks)

        cmd = self.builder.sign_message(len(message_bytes), message_root, bip32_path)
        response = await self._make_request(cmd, client_interpreter)

        if len(response) != 65:
            raise UnexpectedResultError(cmd.ins, response, f"Invalid response length: {len(response)}")

        r = int.from_bytes(response[1:33], byteorder="big")
        s = int.from_bytes(response[33:65], byteorder="big")
        if not (0 < r < SECP256K1_ORDER and 0 < s < SECP256K1_ORDER):
            raise UnexpectedResultError(cmd.ins, response, "Invalid signature")

        return MessageSignature(header=response[0], signature=response[1:])


async def create_client(transport: Transport, chain: Chain = Chain.MAIN, debug: bool = False, **kwargs) -> BitcoinClient:
    """Returns a client for the app running on the device, after checking that it implements this protocol."""
    client = BitcoinClient(transport, chain, debug, **kwargs)
    app_name, app_version, _ = await client.get_version()

    try:
        version = parse_version(app_version)
    except InvalidVersion as e:
        raise UnsupportedAppError(DefaultInsType.GET_VERSION, app_version.encode(), f"Invalid app version: {app_version}") from e

    # The legacy protocol is used if either:
    # - the name of the app is "Bitcoin Legacy" or "Bitcoin Test Legacy" (regardless of the version)
    # - the version is strictly less than 2.1
    use_legacy = app_name in LEGACY_APP_NAMES or version.major < 2 or (version.major == 2 and version.minor == 0)

    if use_legacy:
        raise UnsupportedAppError(DefaultInsType.GET_VERSION, app_version.encode(),
                                  f"Unsupported app: {app_name} {app_version}")

    return client
