import pytest

from embit.bip32 import HDKey
from embit.networks import NETWORKS

from bitcoin_device_client.wallet import WalletPolicy

TEST_SEED = bytes(range(32))


@pytest.fixture
def master_key() -> HDKey:
    return HDKey.from_seed(TEST_SEED, version=NETWORKS["test"]["xprv"])


@pytest.fixture
def account_key_info(master_key: HDKey) -> str:
    xpub = master_key.derive("m/84h/1h/0h").to_public()
    return f"[{master_key.my_fingerprint.hex()}/84'/1'/0']{xpub.to_base58()}"


@pytest.fixture
def wpkh_wallet(account_key_info: str) -> WalletPolicy:
    return WalletPolicy("", "wpkh(@0/**)", [account_key_info])
