"""Flattening of a PSBT into the PSBTv2 key/value maps committed to with SIGN_PSBT.

The device never receives the PSBT itself: it receives the Merkleized commitment of the global map, and the roots of
the lists of commitments of the input and output maps. Any field is then requested with two levels of Merkle proofs:
first the commitment of the input (or output) map within its list, then the key and value within that map.
"""

import logging
from io import BytesIO
from typing import BinaryIO, Dict, Optional, Union

from embit.base import EmbitError
from embit.psbt import PSBT, InputScope, OutputScope
from embit.transaction import TransactionInput, TransactionOutput

from .client_command import ClientCommandInterpreter
from .command_builder import PsbtCommitments
from .common import read_varint, write_varint
from .exception.errors import InvalidPsbtError

logger = logging.getLogger(__name__)

PSBT_GLOBAL_XPUB = b"\x01"
PSBT_GLOBAL_TX_VERSION = b"\x02"
PSBT_GLOBAL_FALLBACK_LOCKTIME = b"\x03"
PSBT_GLOBAL_INPUT_COUNT = b"\x04"
PSBT_GLOBAL_OUTPUT_COUNT = b"\x05"
PSBT_GLOBAL_VERSION = b"\xfb"

PSBT_IN_NON_WITNESS_UTXO = b"\x00"
PSBT_IN_WITNESS_UTXO = b"\x01"
PSBT_IN_PREVIOUS_TXID = b"\x0e"
PSBT_IN_OUTPUT_INDEX = b"\x0f"
PSBT_IN_SEQUENCE = b"\x10"

PSBT_OUT_AMOUNT = b"\x03"
PSBT_OUT_SCRIPT = b"\x04"


def normalize_psbt(psbt: Union[PSBT, bytes, str]) -> PSBT:
    """Accepts a PSBT object, its binary serialization, or its base64 or hex encoding."""
    if isinstance(psbt, PSBT):
        return psbt

    try:
        if isinstance(psbt, str):
            return PSBT.from_string(psbt.strip())
        return PSBT.parse(psbt)
    except (EmbitError, ValueError, IndexError) as e:
        raise InvalidPsbtError(f"Invalid PSBT: {e}") from e


def deser_string(f: BinaryIO) -> bytes:
    length = read_varint(f)
    result = f.read(length)
    if len(result) != length:
        raise ValueError(f"Can't read {length} bytes in buffer!")
    return result


def parse_stream_to_map(f: BinaryIO) -> Dict[bytes, bytes]:
    """Reads one PSBT map from `f`, up to and including its separator."""
    result = {}
    while True:
        try:
            key = deser_string(f)
        except ValueError:
            break

        # Check for separator
        if len(key) == 0:
            break

        value = deser_string(f)

        if key in result:
            raise InvalidPsbtError(f"Duplicated key in PSBT map: {key.hex()}")

        result[key] = value
    return result


def _scope_pairs(scope: Union[InputScope, OutputScope]) -> Dict[bytes, bytes]:
    # fields shared by PSBTv0 and PSBTv2, in the canonical encoding of the library
    stream = BytesIO()
    scope.write_to(stream)
    stream.seek(0)
    return parse_stream_to_map(stream)


def get_txin(psbt: PSBT, index: int) -> TransactionInput:
    """Returns the outpoint and sequence that the unsigned transaction declares for input `index`."""
    if index < 0 or index >= len(psbt.inputs):
        raise InvalidPsbtError(f"Input index out of range: {index} (the PSBT has {len(psbt.inputs)} inputs)")

    psbt_in = psbt.inputs[index]
    if psbt_in.txid is None or psbt_in.vout is None:
        raise InvalidPsbtError(f"Missing previous outpoint for input {index}")

    sequence = psbt_in.sequence if psbt_in.sequence is not None else 0xFFFFFFFF
    return TransactionInput(psbt_in.txid, psbt_in.vout, sequence=sequence)


def get_txout(psbt: PSBT, index: int) -> TransactionOutput:
    """Returns the amount and script that the unsigned transaction declares for output `index`."""
    if index < 0 or index >= len(psbt.outputs):
        raise InvalidPsbtError(f"Output index out of range: {index} (the PSBT has {len(psbt.outputs)} outputs)")

    psbt_out = psbt.outputs[index]
    if psbt_out.value is None or psbt_out.script_pubkey is None:
        raise InvalidPsbtError(f"Missing amount or script for output {index}")

    return TransactionOutput(psbt_out.value, psbt_out.script_pubkey)


def get_global_pairs(psbt: PSBT) -> Dict[bytes, bytes]:
    result: Dict[bytes, bytes] = {}

    for xpub, derivation in psbt.xpubs.items():
        result[PSBT_GLOBAL_XPUB + xpub.serialize()] = derivation.serialize()

    tx_version = psbt.tx_version if psbt.tx_version is not None else 2
    result[PSBT_GLOBAL_TX_VERSION] = tx_version.to_bytes(4, byteorder="little")
    if psbt.locktime is not None:
        result[PSBT_GLOBAL_FALLBACK_LOCKTIME] = psbt.locktime.to_bytes(4, byteorder="little")
    result[PSBT_GLOBAL_INPUT_COUNT] = write_varint(len(psbt.inputs))
    result[PSBT_GLOBAL_OUTPUT_COUNT] = write_varint(len(psbt.outputs))
    result[PSBT_GLOBAL_VERSION] = (2).to_bytes(4, byteorder="little")

    for key, value in psbt.unknown.items():
        if key in result:
            raise InvalidPsbtError(f"Duplicated key in PSBT global map: {key.hex()}")
        result[key] = value

    return result


def get_input_pairs(psbt_in: InputScope, txin: Optional[TransactionInput]) -> Dict[bytes, bytes]:
    if txin is None or txin.txid is None:
        raise InvalidPsbtError("Missing previous outpoint")

    if psbt_in.txid is not None and (psbt_in.txid != txin.txid or psbt_in.vout != txin.vout):
        raise InvalidPsbtError("The input does not match the outpoint of the unsigned transaction")

    if psbt_in.non_witness_utxo is not None:
        if psbt_in.non_witness_utxo.txid() != txin.txid:
            raise InvalidPsbtError("Previous txid doesn't match the non-witness UTXO")
        if txin.vout >= len(psbt_in.non_witness_utxo.vout):
            raise InvalidPsbtError(f"Output index {txin.vout} out of range in the non-witness UTXO")

    result = _scope_pairs(psbt_in)
    result[PSBT_IN_PREVIOUS_TXID] = bytes(reversed(txin.txid))
    result[PSBT_IN_OUTPUT_INDEX] = txin.vout.to_bytes(4, byteorder="little")
    result[PSBT_IN_SEQUENCE] = txin.sequence.to_bytes(4, byteorder="little")
    return result


def get_output_pairs(psbt_out: OutputScope, txout: Optional[TransactionOutput]) -> Dict[bytes, bytes]:
    if txout is None or txout.script_pubkey is None:
        raise InvalidPsbtError("Missing output of the unsigned transaction")

    if psbt_out.value is not None and psbt_out.value != txout.value:
        raise InvalidPsbtError("The output amount does not match the unsigned transaction")

    if psbt_out.script_pubkey is not None and psbt_out.script_pubkey.data != txout.script_pubkey.data:
        raise InvalidPsbtError("The output script does not match the unsigned transaction")

    result = _scope_pairs(psbt_out)
    result[PSBT_OUT_AMOUNT] = txout.value.to_bytes(8, byteorder="little")
    result[PSBT_OUT_SCRIPT] = txout.script_pubkey.data
    return result


def register_psbt(client_interpreter: ClientCommandInterpreter, psbt: PSBT) -> PsbtCommitments:
    """Flattens `psbt`, registers every map and list the device may ask for, and returns the commitments.

    All the validation happens here, before anything is sent to the device.
    """

    global_map = get_global_pairs(psbt)

    # compute every map first, so that an invalid PSBT is rejected before registering anything
    input_maps = [get_input_pairs(psbt.inputs[i], get_txin(psbt, i)) for i in range(len(psbt.inputs))]
    output_maps = [get_output_pairs(psbt.outputs[i], get_txout(psbt, i)) for i in range(len(psbt.outputs))]

    global_commitment = client_interpreter.add_known_mapping(global_map)

    input_commitments = [client_interpreter.add_known_mapping(m) for m in input_maps]
    output_commitments = [client_interpreter.add_known_mapping(m) for m in output_maps]

    # We also add the Merkle tree of the input (resp. output) map commitments as a known tree
    inputs_root = client_interpreter.add_known_list(input_commitments)
    outputs_root = client_interpreter.add_known_list(output_commitments)

    logger.debug("flattened PSBT with %d inputs and %d outputs", len(input_maps), len(output_maps))

    return PsbtCommitments(
        global_commitment=global_commitment,
        n_inputs=len(input_maps),
        inputs_root=inputs_root,
        n_outputs=len(output_maps),
        outputs_root=outputs_root,
    )
