import pytest

from signing.wallet import LocalWallet
from zk.poseidon import PoseidonHasher


@pytest.fixture(scope="session")
def hasher():
    # Parameter generation is the slow part; share one handle across the run
    return PoseidonHasher()


def make_wallet(seed: int) -> LocalWallet:
    return LocalWallet('0x' + format(seed, '064x'))


@pytest.fixture(scope="session")
def wallets():
    return [make_wallet(i + 1) for i in range(6)]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ('VOTING_CHAIN_ID', 'VOTING_VERIFYING_CONTRACT', 'VOTING_TREE_DEPTH'):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
