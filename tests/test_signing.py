import pytest

from signing.eip712 import (DOMAIN_NAME, DOMAIN_VERSION, ZERO_ADDRESS,
                            VoteSignature, checksum_address, create_domain,
                            create_vote_message, keccak256, recover_signer,
                            sign_vote, signature_to_field_elements,
                            typed_data_hash, validate_vote_message)
from signing.wallet import LocalWallet, generate_voter_accounts, wallet_from_record
from zk.errors import MalformedInput, OutOfRange, SigningFailure
from zk.field import SECP256K1_ORDER

TOPIC = "vote-topic-2024"


def test_keccak256_empty_vector():
    assert keccak256(b'').hex() == \
        'c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470'


def test_wallet_address_for_known_key():
    wallet = LocalWallet('0x' + format(1, '064x'))
    assert wallet.address == '0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf'


def test_checksum_address_eip55_vector():
    expected = '0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed'
    assert checksum_address(expected.lower()) == expected


def test_create_domain_defaults(clean_env):
    domain = create_domain(TOPIC)
    assert domain.name == DOMAIN_NAME
    assert domain.version == DOMAIN_VERSION
    assert domain.chain_id == 1
    assert domain.verifying_contract == ZERO_ADDRESS
    assert domain.salt == keccak256(TOPIC.encode())
    assert domain.as_dict()['salt'] == '0x' + keccak256(TOPIC.encode()).hex()


def test_create_domain_environment_fallback(clean_env):
    contract = '0x' + '11' * 20
    clean_env.setenv('VOTING_CHAIN_ID', '31337')
    clean_env.setenv('VOTING_VERIFYING_CONTRACT', contract)
    domain = create_domain(TOPIC)
    assert domain.chain_id == 31337
    assert domain.verifying_contract == contract

    explicit = create_domain(TOPIC, chain_id=5, verifying_contract=ZERO_ADDRESS)
    assert explicit.chain_id == 5
    assert explicit.verifying_contract == ZERO_ADDRESS


def test_create_domain_bad_chain_id(clean_env):
    clean_env.setenv('VOTING_CHAIN_ID', 'mainnet')
    with pytest.raises(MalformedInput):
        create_domain(TOPIC)
    with pytest.raises(MalformedInput):
        create_domain(TOPIC, chain_id=0)


@pytest.mark.parametrize("topic", ["", "a" * 65, "has space", "semi;colon", "ümlaut", 42])
def test_create_domain_rejects_bad_topics(clean_env, topic):
    with pytest.raises(MalformedInput):
        create_domain(topic)


def test_topic_at_length_limit(clean_env):
    assert create_domain("a" * 64).salt == keccak256(b"a" * 64)


def test_vote_message_is_topic_invariant():
    assert create_vote_message(TOPIC) == {'topic': TOPIC}


def test_typed_data_hash_binds_domain(clean_env):
    message = create_vote_message(TOPIC)
    base = typed_data_hash(create_domain(TOPIC), message)
    assert len(base) == 32
    assert base != typed_data_hash(create_domain(TOPIC, chain_id=2), message)
    assert base != typed_data_hash(create_domain("other-topic"), message)


def test_sign_vote_is_deterministic(clean_env, wallets):
    first = sign_vote(wallets[0], TOPIC)
    second = sign_vote(wallets[0], TOPIC)
    assert first == second
    assert first.v in (27, 28)
    assert 0 < first.s <= SECP256K1_ORDER // 2


def test_sign_vote_differs_per_topic_and_wallet(clean_env, wallets):
    base = sign_vote(wallets[0], TOPIC)
    assert sign_vote(wallets[0], "another-topic").r != base.r
    assert sign_vote(wallets[1], TOPIC).r != base.r


def test_signature_message_hash_is_typed_data_hash(clean_env, wallets):
    signature = sign_vote(wallets[0], TOPIC)
    assert signature.message_hash == typed_data_hash(
        create_domain(TOPIC), create_vote_message(TOPIC))


def test_recover_signer(clean_env, wallets):
    for wallet in wallets[:3]:
        signature = sign_vote(wallet, TOPIC)
        assert recover_signer(TOPIC, signature) == wallet.address


def test_recover_signer_other_topic_gives_other_address(clean_env, wallets):
    signature = sign_vote(wallets[0], TOPIC)
    assert recover_signer("another-topic", signature) != wallets[0].address


class _RaisingWallet:
    def sign_typed_data(self, domain, message):
        raise RuntimeError("user rejected request")


class _MappingWallet:
    def __init__(self, wallet, tamper=False):
        self.wallet = wallet
        self.tamper = tamper

    def sign_typed_data(self, domain, message):
        sig = self.wallet.sign_typed_data(domain, message)
        digest = bytes(32) if self.tamper else sig.message_hash
        return {'r': hex(sig.r), 's': str(sig.s), 'v': sig.v,
                'messageHash': '0x' + digest.hex()}


class _GarbageWallet:
    def sign_typed_data(self, domain, message):
        return 12345


def test_collaborator_failure_becomes_signing_failure(clean_env):
    with pytest.raises(SigningFailure):
        sign_vote(_RaisingWallet(), TOPIC)
    with pytest.raises(SigningFailure):
        sign_vote(_GarbageWallet(), TOPIC)


def test_mapping_signature_is_accepted(clean_env, wallets):
    signature = sign_vote(_MappingWallet(wallets[0]), TOPIC)
    assert signature == sign_vote(wallets[0], TOPIC)


def test_mismatched_message_hash_is_rejected(clean_env, wallets):
    with pytest.raises(SigningFailure):
        sign_vote(_MappingWallet(wallets[0], tamper=True), TOPIC)


def test_signature_to_field_elements(clean_env, wallets):
    signature = sign_vote(wallets[0], TOPIC)
    fields = signature_to_field_elements(signature)
    assert fields == {'r': str(signature.r), 's': str(signature.s), 'v': str(signature.v)}

    as_mapping = signature_to_field_elements({'r': signature.r, 's': signature.s, 'v': 27})
    assert as_mapping['v'] == '27'


def test_signature_to_field_elements_rejects_bad_components():
    with pytest.raises(MalformedInput):
        signature_to_field_elements({'r': 1, 's': 2})
    with pytest.raises(MalformedInput):
        signature_to_field_elements({'r': 1, 's': 2, 'v': 29})
    with pytest.raises(OutOfRange):
        signature_to_field_elements({'r': 0, 's': 2, 'v': 27})
    with pytest.raises(OutOfRange):
        signature_to_field_elements(VoteSignature(r=1, s=SECP256K1_ORDER, v=27,
                                                  message_hash=bytes(32)))


def test_validate_vote_message():
    assert validate_vote_message("Yes, I support this!") == "Yes, I support this!"
    for bad in ("", "x" * 501, "tab\tseparated", None):
        with pytest.raises(MalformedInput):
            validate_vote_message(bad)


@pytest.mark.parametrize("key", ["0x" + "00" * 32, "0x1234", "zz" * 32,
                                 "0x" + format(SECP256K1_ORDER, '064x'), 7])
def test_local_wallet_rejects_bad_keys(key):
    with pytest.raises(MalformedInput):
        LocalWallet(key)


def test_wallet_private_key_round_trip(wallets):
    restored = LocalWallet(wallets[2].private_key)
    assert restored.address == wallets[2].address


def test_generate_voter_accounts():
    accounts = generate_voter_accounts(3)
    assert [a['index'] for a in accounts] == [0, 1, 2]
    assert len({a['address'] for a in accounts}) == 3
    assert wallet_from_record(accounts[1]).address == accounts[1]['address']


@pytest.mark.parametrize("count", [0, -1, 1001, True])
def test_generate_voter_accounts_bounds(count):
    with pytest.raises(MalformedInput):
        generate_voter_accounts(count)


def test_wallet_from_record_requires_key():
    with pytest.raises(MalformedInput):
        wallet_from_record({'address': '0x' + '00' * 20})


def test_sign_vote_honours_topic_length_limit(clean_env, wallets):
    long_topic = "t" * 80
    with pytest.raises(MalformedInput):
        sign_vote(wallets[0], long_topic)
    signature = sign_vote(wallets[0], long_topic, max_topic_length=100)
    assert recover_signer(long_topic, signature, max_topic_length=100) == wallets[0].address
