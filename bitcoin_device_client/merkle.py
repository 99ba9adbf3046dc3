from typing import Iterable, List, Mapping, Optional, Sequence

from .common import sha256, write_varint

NIL = bytes([0] * 32)


def floor_lg(n: int) -> int:
    """Return floor(log_2(n)) for a positive integer `n`"""

    assert n > 0

    r = 0
    t = 1
    while 2 * t <= n:
        t = 2 * t
        r = r + 1
    return r


def ceil_lg(n: int) -> int:
    """Return ceiling(log_2(n)) for a positive integer `n`."""

    assert n > 0

    r = 0
    t = 1
    while t < n:
        t = 2 * t
        r = r + 1
    return r


def is_power_of_2(n: int) -> bool:
    """For a positive integer `n`, returns `True` is `n` is a perfect power of 2, `False` otherwise."""

    assert n >= 1

    return n & (n - 1) == 0


def largest_power_of_2_less_than(n: int) -> int:
    """For an integer `n` which is at least 2, returns the largest exact power of 2 that is strictly less than `n`."""

    assert n > 1

    if is_power_of_2(n):
        return n // 2
    else:
        return 1 << floor_lg(n)


def element_hash(element_preimage: bytes) -> bytes:
    """Computes the hash of an element to be stored in the Merkle tree."""

    return sha256(b'\x00' + element_preimage)


def combine_hashes(left: bytes, right: bytes) -> bytes:
    if len(left) != 32 or len(right) != 32:
        raise ValueError("The elements must be 32-bytes sha256 outputs.")

    return sha256(b'\x01' + left + right)


# root is the only node with parent == None
# leaves have left == right == None
class Node:
    def __init__(self, left: Optional["Node"], right: Optional["Node"], parent: Optional["Node"], value: Optional[bytes]):
        self.left = left
        self.right = right
        self.parent = parent
        self.value = value

    def recompute_value(self):
        assert self.left is not None
        assert self.right is not None
        self.value = combine_hashes(self.left.value, self.right.value)

    def sibling(self) -> "Node":
        if self.parent is None:
            raise IndexError("The root does not have a sibling.")

        if self.parent.left is self:
            return self.parent.right
        elif self.parent.right is self:
            return self.parent.left
        else:
            raise IndexError("Invalid state: not a child of his parent.")


def make_tree(leaves: List[Node], begin: int, size: int) -> Node:
    """Given a list of nodes, builds the left-complete Merkle tree on top of it.
    The nodes in `leaves` are modified by setting their `parent` field appropriately.
    It returns the root of the newly built tree.
    """

    if size == 1:
        return leaves[begin]

    lchild_size = largest_power_of_2_less_than(size)

    lchild = make_tree(leaves, begin, lchild_size)
    rchild = make_tree(leaves, begin + lchild_size, size - lchild_size)
    root = Node(lchild, rchild, None, None)
    root.recompute_value()
    lchild.parent = rchild.parent = root
    return root


class MerkleTree:
    """
    Maintains a vector of leaf hashes and the Merkle tree built on top of it.

    The value of each internal node is the hash of the concatenation of:
    - a single byte 0x01;
    - the value of the left child;
    - the value of the right child.

    The binary tree has the following properties (assuming the vector contains n leaves):
    - There are always n - 1 internal nodes; all the internal nodes have exactly two children.
    - If a subtree has n > 1 leaves, then the left subchild is a complete subtree with p leaves, where p is the largest
      power of 2 smaller than n.

    The leaves are expected to be hashes already; use `element_hash` to compute them from the elements.
    """

    def __init__(self, elements: Iterable[bytes] = ()):
        self.leaves = [Node(None, None, None, el) for el in elements]
        n_elements = len(self.leaves)
        if n_elements > 0:
            self.root_node = make_tree(self.leaves, 0, n_elements)
            self.depth = ceil_lg(n_elements)
        else:
            self.root_node = None
            self.depth = None

    def __len__(self) -> int:
        return len(self.leaves)

    @property
    def root(self) -> bytes:
        return NIL if self.root_node is None else self.root_node.value

    def get(self, i: int) -> bytes:
        if i < 0 or i >= len(self.leaves):
            raise IndexError("Index out of bounds")

        return self.leaves[i].value

    def leaf_index(self, x: bytes) -> int:
        """Returns the index of the leaf with hash `x`. Raises `ValueError` if not found."""
        for idx, el in enumerate(self.leaves):
            if el.value == x:
                return idx
        raise ValueError("Leaf not found")

    def prove_leaf(self, index: int) -> List[bytes]:
        """Produce the Merkle proof of membership for the leaf with the given index.

        The proof is the list of the siblings of the nodes on the path from the leaf to the root, starting from the
        sibling of the leaf itself.
        """
        node = self.leaves[index]
        proof = []
        while node.parent is not None:
            sibling = node.sibling()
            assert sibling is not None

            proof.append(sibling.value)

            node = node.parent

        return proof


def get_merkle_root(elements: Iterable[bytes]) -> bytes:
    """Returns the root of the Merkle tree of the given sequence of elements."""
    return MerkleTree(element_hash(el) for el in elements).root


def get_merkle_proof(elements: Sequence[bytes], index: int) -> List[bytes]:
    """Returns the Merkle proof for the element at position `index` of `elements`."""
    return MerkleTree(element_hash(el) for el in elements).prove_leaf(index)


def verify_merkle_proof(root: bytes, size: int, index: int, leaf_hash: bytes, proof: Sequence[bytes]) -> bool:
    """Recomputes the root of a tree with `size` leaves from `leaf_hash` at position `index` and its proof.

    Returns `True` if the recomputed root equals `root`. This follows the same tree shape as `MerkleTree`: the left
    subtree of a node with n > 1 leaves holds the largest power of 2 strictly smaller than n.
    """

    if index < 0 or index >= size:
        return False

    # directions from the root down to the leaf; True if the path goes to the right child
    directions: List[bool] = []
    while size > 1:
        lchild_size = largest_power_of_2_less_than(size)
        if index < lchild_size:
            directions.append(False)
            size = lchild_size
        else:
            directions.append(True)
            index -= lchild_size
            size -= lchild_size

    if len(proof) != len(directions):
        return False

    cur = leaf_hash
    for is_right, sibling in zip(reversed(directions), proof):
        if len(sibling) != 32:
            return False
        cur = combine_hashes(sibling, cur) if is_right else combine_hashes(cur, sibling)

    return cur == root


def get_merkleized_map_commitment(mapping: Mapping[bytes, bytes]) -> bytes:
    """Returns a serialized Merkleized map commitment, encoded as the concatenation of:
    - the number of key/value pairs, as a Bitcoin-style varint;
    - the root of the Merkle tree of the keys
    - the root of the Merkle tree of the values.
    Keys are sorted lexicographically before building the trees.
    """
    items_sorted = list(sorted(mapping.items()))

    keys_hashes = [element_hash(i[0]) for i in items_sorted]
    values_hashes = [element_hash(i[1]) for i in items_sorted]

    return write_varint(len(mapping)) + MerkleTree(keys_hashes).root + MerkleTree(values_hashes).root
