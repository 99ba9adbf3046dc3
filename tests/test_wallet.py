from hashlib import sha256

import pytest

from bitcoin_device_client import AddressType, MultisigWallet, WalletPolicy, WalletType
from bitcoin_device_client.common import write_varint
from bitcoin_device_client.exception import InvalidInputError
from bitcoin_device_client.merkle import get_merkle_root

KEY_0 = "[76223a6e/48'/1'/0'/2']tpubDE7NQymr4AFtewpAsWtnreyq9ghkzQBXpCZjWLFVRAvnbf7vya2eMTvT2fPapNqL8SuVvLQdbUbMfWLVDCZKnsEBqp6UK93QEzL8Ck23AwF"
KEY_1 = "[f5acc2fd/48'/1'/0'/2']tpubDFAqEGNyad35aBCKUAXbQGDjdVhNueno5ZZVEn3sQbW5ci457gLR7HyTmHBg93oourBssgUxuWz1jX5uhc1qaqFo9VsybY1J5FuedLfm4dK"


def test_wallet_policy_serialize():
    wallet = WalletPolicy("Cold storage", "wsh(sortedmulti(2,@0/**,@1/**))", [KEY_0, KEY_1])

    template = b"wsh(sortedmulti(2,@0/**,@1/**))"
    assert wallet.serialize() == b"".join([
        b"\x02",
        bytes([len("Cold storage")]) + b"Cold storage",
        write_varint(len(template)),
        sha256(template).digest(),
        write_varint(2),
        get_merkle_root([KEY_0.encode(), KEY_1.encode()]),
    ])
    assert wallet.id == sha256(wallet.serialize()).digest()
    assert wallet.n_keys == 2


def test_wallet_policy_v1_serialize():
    wallet = WalletPolicy("", "wpkh(@0)", [KEY_0 + "/**"], version=WalletType.WALLET_POLICY_V1)

    serialized = wallet.serialize()

    assert serialized[0] == 1
    assert serialized[1] == 0
    assert serialized[2:3 + len("wpkh(@0)")] == write_varint(len("wpkh(@0)")) + b"wpkh(@0)"


def test_get_descriptor():
    wallet = WalletPolicy("", "wsh(sortedmulti(2,@0/**,@1/**))", [KEY_0, KEY_1])

    assert wallet.get_descriptor(False) == f"wsh(sortedmulti(2,{KEY_0}/0/*,{KEY_1}/0/*))"
    assert wallet.get_descriptor(True) == f"wsh(sortedmulti(2,{KEY_0}/1/*,{KEY_1}/1/*))"


def test_get_descriptor_many_keys():
    # @1 must not be replaced inside @10
    keys = [f"key{i}" for i in range(11)]
    wallet = WalletPolicy("", "sh(multi(1," + ",".join(f"@{i}/**" for i in range(11)) + "))", keys)

    assert wallet.get_descriptor(False) == "sh(multi(1," + ",".join(f"key{i}/0/*" for i in range(11)) + "))"


@pytest.mark.parametrize("address_type,descriptor_template", [
    (AddressType.LEGACY, "sh(sortedmulti(2,@0/**,@1/**))"),
    (AddressType.WIT, "wsh(sortedmulti(2,@0/**,@1/**))"),
    (AddressType.SH_WIT, "sh(wsh(sortedmulti(2,@0/**,@1/**)))"),
])
def test_multisig_wallet(address_type: AddressType, descriptor_template: str):
    wallet = MultisigWallet("Cold storage", address_type, 2, [KEY_0, KEY_1])

    assert wallet.descriptor_template == descriptor_template
    assert wallet.threshold == 2


def test_multisig_wallet_unsorted_v1():
    wallet = MultisigWallet("Cold storage", AddressType.WIT, 1, [KEY_0, KEY_1], sorted=False,
                            version=WalletType.WALLET_POLICY_V1)

    assert wallet.descriptor_template == "wsh(multi(1,@0,@1))"


@pytest.mark.parametrize("threshold,n_keys", [(0, 2), (3, 2), (1, 17)])
def test_multisig_wallet_invalid_threshold(threshold: int, n_keys: int):
    with pytest.raises(InvalidInputError):
        MultisigWallet("Cold storage", AddressType.WIT, threshold, [KEY_0] * n_keys)


def test_multisig_wallet_taproot_unsupported():
    with pytest.raises(InvalidInputError):
        MultisigWallet("Cold storage", AddressType.TAP, 1, [KEY_0, KEY_1])


def test_invalid_wallets():
    with pytest.raises(InvalidInputError):
        WalletPolicy("a" * 65, "wpkh(@0/**)", [KEY_0])

    with pytest.raises(InvalidInputError):
        WalletPolicy("", "wpkh(@0/**)", [KEY_0] * 253)

    with pytest.raises(InvalidInputError):
        WalletPolicy("", "wpkh(@0/**)", [KEY_0], version=3)

    # 64 bytes is the longest valid name
    WalletPolicy("a" * 64, "wpkh(@0/**)", [KEY_0])
