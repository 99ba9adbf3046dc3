import unittest

from bitcoin_device_client import merkle as MT
from bitcoin_device_client.common import sha256, write_varint


class TestMerkle(unittest.TestCase):

    def test_floor_lg(self):
        self.assertEqual(MT.floor_lg(1), 0)
        self.assertEqual(MT.floor_lg(2), 1)
        self.assertEqual(MT.floor_lg(3), 1)
        self.assertEqual(MT.floor_lg(4), 2)
        self.assertEqual(MT.floor_lg(5), 2)
        with self.assertRaises(AssertionError):
            MT.floor_lg(-1)

    def test_ceil_lg(self):
        self.assertEqual(MT.ceil_lg(1), 0)
        self.assertEqual(MT.ceil_lg(2), 1)
        self.assertEqual(MT.ceil_lg(3), 2)
        self.assertEqual(MT.ceil_lg(4), 2)
        with self.assertRaises(AssertionError):
            MT.ceil_lg(0)

    def test_is_power_of_2(self):
        self.assertTrue(MT.is_power_of_2(1))
        self.assertTrue(MT.is_power_of_2(2))
        self.assertFalse(MT.is_power_of_2(3))
        self.assertTrue(MT.is_power_of_2(4))
        with self.assertRaises(AssertionError):
            MT.is_power_of_2(0)

    def test_largest_power_of_2_less_than(self):
        self.assertEqual(MT.largest_power_of_2_less_than(2), 1)
        self.assertEqual(MT.largest_power_of_2_less_than(3), 2)
        self.assertEqual(MT.largest_power_of_2_less_than(4), 2)
        self.assertEqual(MT.largest_power_of_2_less_than(5), 4)
        self.assertEqual(MT.largest_power_of_2_less_than(8), 4)
        self.assertEqual(MT.largest_power_of_2_less_than(9), 8)

    def test_element_hash(self):
        input = bytes([1]*32)
        self.assertEqual(MT.element_hash(input), sha256(b'\x00' + input))

    def test_combine_hashes(self):
        input1 = bytes([1]*32)
        input2 = bytes([2]*32)
        self.assertEqual(MT.combine_hashes(input1, input2), sha256(b'\x01' + input1 + input2))

        with self.assertRaises(ValueError):
            MT.combine_hashes(input1, b'\x02')

    def test_make_tree(self):
        input = [bytes([1]*32), bytes([2]*32), bytes([3]*32), bytes([4]*32), bytes([5]*32)]
        leaves = [MT.Node(None, None, None, el) for el in input]
        hash12 = MT.combine_hashes(input[0], input[1])
        hash34 = MT.combine_hashes(input[2], input[3])
        hash1234 = MT.combine_hashes(hash12, hash34)
        hash12345 = MT.combine_hashes(hash1234, input[4])
        self.assertEqual(MT.make_tree(leaves, 0, 5).value, hash12345)

    def test_prove_leaf(self):
        input = [bytes([1]*32), bytes([2]*32), bytes([3]*32), bytes([4]*32), bytes([5]*32)]
        merkleTree1 = MT.MerkleTree(input)

        proof = merkleTree1.prove_leaf(2)

        hash12 = MT.combine_hashes(input[0], input[1])

        self.assertEqual(proof[0], input[3])
        self.assertEqual(proof[1], hash12)
        self.assertEqual(proof[2], input[4])

    def test_empty_tree(self):
        mt = MT.MerkleTree()
        self.assertEqual(len(mt), 0)
        self.assertEqual(mt.root, MT.NIL)
        self.assertEqual(MT.get_merkle_root([]), bytes(32))

    def test_single_element(self):
        # the root of a one-element list is the hash of its element, with an empty proof
        self.assertEqual(MT.get_merkle_root([b"x"]), MT.element_hash(b"x"))
        self.assertEqual(MT.get_merkle_proof([b"x"], 0), [])
        self.assertTrue(MT.verify_merkle_proof(MT.element_hash(b"x"), 1, 0, MT.element_hash(b"x"), []))

    def test_root_is_deterministic_and_order_sensitive(self):
        elements = [b"a", b"b", b"c"]
        self.assertEqual(MT.get_merkle_root(elements), MT.get_merkle_root(list(elements)))
        self.assertNotEqual(MT.get_merkle_root(elements), MT.get_merkle_root([b"b", b"a", b"c"]))

    def test_proofs_verify_for_every_index(self):
        for n in [1, 2, 3, 4, 5, 7, 8, 9, 16, 17, 33]:
            elements = [i.to_bytes(2, byteorder="big") for i in range(n)]
            root = MT.get_merkle_root(elements)
            for i in range(n):
                proof = MT.get_merkle_proof(elements, i)
                self.assertEqual(len(proof), len(MT.MerkleTree([MT.element_hash(el) for el in elements]).prove_leaf(i)))
                self.assertTrue(MT.verify_merkle_proof(root, n, i, MT.element_hash(elements[i]), proof))

    def test_proof_rejects_wrong_data(self):
        elements = [b"a", b"b", b"c", b"d", b"e"]
        root = MT.get_merkle_root(elements)
        proof = MT.get_merkle_proof(elements, 2)

        self.assertFalse(MT.verify_merkle_proof(root, 5, 2, MT.element_hash(b"x"), proof))
        self.assertFalse(MT.verify_merkle_proof(root, 5, 3, MT.element_hash(b"c"), proof))
        self.assertFalse(MT.verify_merkle_proof(root, 5, 2, MT.element_hash(b"c"), proof[:-1]))
        self.assertFalse(MT.verify_merkle_proof(root, 5, 5, MT.element_hash(b"c"), proof))

    def test_get_and_leaf_index(self):
        leaves = [MT.element_hash(el) for el in [b"a", b"b", b"c"]]
        mt = MT.MerkleTree(leaves)

        self.assertEqual(mt.get(1), leaves[1])
        self.assertEqual(mt.leaf_index(leaves[2]), 2)
        with self.assertRaises(IndexError):
            mt.get(3)
        with self.assertRaises(ValueError):
            mt.leaf_index(MT.element_hash(b"d"))

    def test_merkleized_map_commitment(self):
        mapping = {b"\x02": b"two", b"\x01": b"one"}

        commitment = MT.get_merkleized_map_commitment(mapping)

        self.assertEqual(commitment, b"".join([
            write_varint(2),
            MT.get_merkle_root([b"\x01", b"\x02"]),
            MT.get_merkle_root([b"one", b"two"]),
        ]))
        # insertion order is irrelevant
        self.assertEqual(commitment, MT.get_merkleized_map_commitment({b"\x01": b"one", b"\x02": b"two"}))


if __name__ == '__main__':
    unittest.main()
