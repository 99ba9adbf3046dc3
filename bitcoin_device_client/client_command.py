import logging
from enum import IntEnum
from typing import Dict, Iterable, List, Mapping
from collections import deque

from .common import ByteStreamParser, sha256, write_varint
from .exception.errors import ProtocolError
from .merkle import MerkleTree, element_hash, get_merkleized_map_commitment

logger = logging.getLogger(__name__)

# Every response to a client command must fit in a single APDU
MAX_RESPONSE_LEN = 255


class ClientCommandCode(IntEnum):
    YIELD = 0x10
    GET_PREIMAGE = 0x40
    GET_MERKLE_LEAF_PROOF = 0x41
    GET_MERKLE_LEAF_INDEX = 0x42
    GET_MORE_ELEMENTS = 0xA0


class ClientCommand:
    def execute(self, request: bytes) -> bytes:
        raise NotImplementedError("Subclasses should implement this method.")

    @property
    def code(self) -> int:
        raise NotImplementedError("Subclasses should implement this method.")


class YieldCommand(ClientCommand):
    def __init__(self, results: List[bytes]):
        self.results = results

    @property
    def code(self) -> int:
        return ClientCommandCode.YIELD

    def execute(self, request: bytes) -> bytes:
        self.results.append(request[1:])  # only skip the first byte (command code)
        return b""


class GetPreimageCommand(ClientCommand):
    def __init__(self, known_preimages: Mapping[bytes, bytes], queue: "deque[bytes]"):
        self.queue = queue
        self.known_preimages = known_preimages

    @property
    def code(self) -> int:
        return ClientCommandCode.GET_PREIMAGE

    def execute(self, request: bytes) -> bytes:
        req = ByteStreamParser(request[1:])

        if req.read_bytes(1) != b'\0':
            raise ProtocolError("Unsupported request: the first byte should be 0")

        req_hash = req.read_bytes(32)
        req.assert_empty()

        if req_hash not in self.known_preimages:
            raise ProtocolError(f"Requested unknown preimage for: {req_hash.hex()}")

        known_preimage = self.known_preimages[req_hash]

        preimage_len_out = write_varint(len(known_preimage))

        # We can send at most 255 - len(preimage_len_out) - 1 bytes in a single message;
        # the rest will be stored for GET_MORE_ELEMENTS
        max_payload_size = MAX_RESPONSE_LEN - len(preimage_len_out) - 1

        payload_size = min(max_payload_size, len(known_preimage))

        if payload_size < len(known_preimage):
            # split into list of length-1 bytes elements
            extra_elements = [
                known_preimage[i: i + 1]
                for i in range(payload_size, len(known_preimage))
            ]
            # add to the queue any remaining extra bytes
            self.queue.extend(extra_elements)

        return (
            preimage_len_out
            + payload_size.to_bytes(1, byteorder="big")
            + known_preimage[:payload_size]
        )


class GetMerkleLeafProofCommand(ClientCommand):
    def __init__(self, known_trees: Mapping[bytes, MerkleTree], queue: "deque[bytes]"):
        self.queue = queue
        self.known_trees = known_trees

    @property
    def code(self) -> int:
        return ClientCommandCode.GET_MERKLE_LEAF_PROOF

    def execute(self, request: bytes) -> bytes:
        req = ByteStreamParser(request[1:])

        root = req.read_bytes(32)
        tree_size = req.read_varint()
        leaf_index = req.read_varint()
        req.assert_empty()

        if root not in self.known_trees:
            raise ProtocolError(f"Unknown Merkle root: {root.hex()}.")

        mt: MerkleTree = self.known_trees[root]

        if leaf_index >= tree_size or len(mt) != tree_size:
            raise ProtocolError("Invalid index or tree size.")

        if len(self.queue) != 0:
            raise ProtocolError(
                "This command should not execute when the queue is not empty."
            )

        proof = mt.prove_leaf(leaf_index)

        # Compute how many elements we can fit in 255 - 32 - 1 - 1 = 221 bytes
        n_response_elements = min((MAX_RESPONSE_LEN - 32 - 1 - 1) // 32, len(proof))
        n_leftover_elements = len(proof) - n_response_elements

        # Add to the queue any proof elements that do not fit the response
        if n_leftover_elements > 0:
            self.queue.extend(proof[-n_leftover_elements:])

        return b"".join(
            [
                mt.get(leaf_index),
                len(proof).to_bytes(1, byteorder="big"),
                n_response_elements.to_bytes(1, byteorder="big"),
                *proof[:n_response_elements],
            ]
        )


class GetMerkleLeafIndexCommand(ClientCommand):
    def __init__(self, known_trees: Mapping[bytes, MerkleTree]):
        self.known_trees = known_trees

    @property
    def code(self) -> int:
        return ClientCommandCode.GET_MERKLE_LEAF_INDEX

    def execute(self, request: bytes) -> bytes:
        req = ByteStreamParser(request[1:])

        root = req.read_bytes(32)
        leaf_hash = req.read_bytes(32)
        req.assert_empty()

        if root not in self.known_trees:
            raise ProtocolError(f"Unknown Merkle root: {root.hex()}.")

        try:
            leaf_index = self.known_trees[root].leaf_index(leaf_hash)
            found = 1
        except ValueError:
            leaf_index = 0
            found = 0

        return found.to_bytes(1, byteorder="big") + write_varint(leaf_index)


class GetMoreElementsCommand(ClientCommand):
    def __init__(self, queue: "deque[bytes]"):
        self.queue = queue

    @property
    def code(self) -> int:
        return ClientCommandCode.GET_MORE_ELEMENTS

    def execute(self, request: bytes) -> bytes:
        if len(request) != 1:
            raise ProtocolError("Wrong request length.")

        if len(self.queue) == 0:
            raise ProtocolError("No elements to get.")

        element_len = len(self.queue[0])
        if any(len(el) != element_len for el in self.queue):
            raise ProtocolError(
                "The queue contains elements of different byte length, which is not expected."
            )

        # pop from the queue, keeping the total response length at most 255

        response_elements = bytearray()

        n_added_elements = 0
        while len(self.queue) > 0 and len(response_elements) + element_len <= MAX_RESPONSE_LEN - 2:
            response_elements.extend(self.queue.popleft())
            n_added_elements += 1

        return b"".join(
            [
                n_added_elements.to_bytes(1, byteorder="big"),
                element_len.to_bytes(1, byteorder="big"),
                bytes(response_elements),
            ]
        )


class ClientCommandInterpreter:
    """Answers the requests that the device sends while a command is interrupted.

    One interpreter is created for each logical operation: the caller registers every preimage, list and mapping the
    device could ask for, then passes the interpreter to the request loop. Fragments yielded by the device are
    accumulated in order, and are only meaningful once the command completed successfully.
    """

    def __init__(self):
        self.known_preimages: Dict[bytes, bytes] = {}
        self.known_trees: Dict[bytes, MerkleTree] = {}
        self.known_keylists: Dict[bytes, List[str]] = {}

        self._yielded: List[bytes] = []

        queue = deque()

        commands = [
            YieldCommand(self._yielded),
            GetPreimageCommand(self.known_preimages, queue),
            GetMerkleLeafIndexCommand(self.known_trees),
            GetMerkleLeafProofCommand(self.known_trees, queue),
            GetMoreElementsCommand(queue),
        ]

        self.commands = {cmd.code: cmd for cmd in commands}

    def execute(self, hw_response: bytes) -> bytes:
        """Computes the answer to the client command `hw_response`.

        Raises `ProtocolError` if the request is empty, malformed, of an unknown type, or refers to data that was
        never registered.
        """
        if len(hw_response) == 0:
            raise ProtocolError(
                "Unexpected empty SW_INTERRUPTED_EXECUTION response from hardware wallet."
            )

        cmd_code = hw_response[0]
        if cmd_code not in self.commands:
            raise ProtocolError(
                "Unexpected command code: 0x{:02X}".format(cmd_code)
            )

        logger.debug("client command %s: %s", ClientCommandCode(cmd_code).name, hw_response[1:].hex())

        try:
            return self.commands[cmd_code].execute(hw_response)
        except ValueError as e:
            # raised by ByteStreamParser on truncated or oversized requests
            raise ProtocolError(f"Malformed client command 0x{cmd_code:02X}: {e}") from e

    @property
    def yielded(self) -> List[bytes]:
        return list(self._yielded)

    def take_yielded(self) -> List[bytes]:
        """Returns all the fragments yielded so far, and clears them."""
        results = list(self._yielded)
        self._yielded.clear()
        return results

    def add_known_preimage(self, element: bytes) -> bytes:
        """Registers `element`, so that the device can request it by its SHA-256 hash, which is returned."""
        element_sha256 = sha256(element)
        self.known_preimages[element_sha256] = element
        return element_sha256

    def add_known_list(self, elements: Iterable[bytes]) -> bytes:
        """Registers a list of elements, and returns the root of its Merkle tree.

        The device can request the leaf hashes and proofs by root, and each element as the preimage of its leaf hash.
        """
        elements = list(elements)

        for el in elements:
            self.add_known_preimage(b"\x00" + el)

        mt = MerkleTree(element_hash(el) for el in elements)

        self.known_trees[mt.root] = mt

        return mt.root

    def add_known_pubkey_list(self, keys_info: List[str]) -> bytes:
        elements_encoded = [key_info.encode() for key_info in keys_info]
        root = self.add_known_list(elements_encoded)
        self.known_keylists[root] = keys_info
        return root

    def add_known_mapping(self, mapping: Mapping[bytes, bytes]) -> bytes:
        """Registers the sorted keys and the values of `mapping` as two lists, and returns the map commitment."""
        items_sorted = list(sorted(mapping.items()))

        keys = [i[0] for i in items_sorted]
        values = [i[1] for i in items_sorted]
        self.add_known_list(keys)
        self.add_known_list(values)

        return get_merkleized_map_commitment(mapping)
