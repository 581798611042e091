import asyncio
from dataclasses import replace

import pytest

from config.config import SigningConfig, SystemConfig, ZKConfig
from utils.utils import PerformanceMonitor
from voting_system import AnonymousVotingSystem, VoteOutcome
from zk.assembler import PublicSignals
from zk.errors import MalformedInput, ProvingFailure, SigningFailure
from zk.merkle import PADDING_LEAF, compute_root
from zk.nullifier import derive_nullifier, topic_hash
from zk.prover import ProofResult, SnarkjsProver, SnarkjsVerifier

TOPIC = "vote-topic-2024"
FAKE_PROOF = {'pi_a': ['1', '2', '1'], 'pi_b': [], 'pi_c': ['3', '4', '1']}


class FakeCircuitProver:
    """Enforces the membership and nullifier relations the circuit would"""

    def __init__(self, hasher, nullifier_offset=0, delay=0.0, tamper=None):
        self.hasher = hasher
        self.nullifier_offset = nullifier_offset
        self.delay = delay
        self.tamper = tamper
        self.records = []

    async def prove(self, record):
        self.records.append(record)
        if self.delay:
            await asyncio.sleep(self.delay)
        root = compute_root(record.voter_address, record.path_elements,
                            record.path_indices, self.hasher, record.depth)
        if root != record.merkle_root:
            raise ProvingFailure("Assert Failed: voter is not a member")
        r, s = record.signature_scalars()
        nullifier = derive_nullifier(r, s, record.topic_id, record.message_hash,
                                     self.hasher) + self.nullifier_offset
        signals = PublicSignals(nullifier=nullifier, merkle_root=record.merkle_root,
                                topic_id_hash=record.topic_id,
                                message_hash=record.message_hash)
        if self.tamper is not None:
            signals = self.tamper(signals)
        return ProofResult(proof=FAKE_PROOF, public_signals=signals, generation_time=0.0)


class FakeVerifier:
    def __init__(self, valid=True):
        self.valid = valid
        self.calls = 0

    async def verify(self, proof, public_signals):
        self.calls += 1
        return self.valid


class RefusingWallet:
    address = '0x' + 'ee' * 20

    def sign_typed_data(self, domain, message):
        raise PermissionError("signature request denied")


def make_system(hasher, wallets, tmp_path, prover=None, verifier=None,
                registry_scope="global", proof_timeout=30, max_topic_length=64):
    config = SystemConfig(
        zk_config=ZKConfig(tree_depth=3, proof_timeout=proof_timeout),
        signing_config=SigningConfig(max_topic_length=max_topic_length),
        registry_scope=registry_scope,
        log_dir=tmp_path / "logs",
        results_dir=tmp_path / "results",
    )
    system = AnonymousVotingSystem(
        config, hasher,
        prover or FakeCircuitProver(hasher),
        verifier or FakeVerifier(),
        monitor=PerformanceMonitor())
    system.publish_voter_set([w.address for w in wallets[:3]])
    return system


def test_eligible_vote_is_accepted(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    receipt = asyncio.run(system.cast_vote(wallets[0], TOPIC, "I support this"))

    assert receipt.outcome == VoteOutcome.ACCEPTED
    assert receipt.accepted
    assert receipt.merkle_root == system.tree.root
    assert receipt.vote_message == "I support this"
    assert system.registry.contains(receipt.nullifier)


def test_second_vote_on_same_topic_is_rejected(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    first = asyncio.run(system.cast_vote(wallets[0], TOPIC))
    second = asyncio.run(system.cast_vote(wallets[0], TOPIC))

    assert first.outcome == VoteOutcome.ACCEPTED
    assert second.outcome == VoteOutcome.REJECTED_DOUBLE_VOTE
    assert second.nullifier == first.nullifier
    assert len(system.registry) == 1


def test_same_voter_may_vote_on_other_topics(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    first = asyncio.run(system.cast_vote(wallets[0], TOPIC))
    other = asyncio.run(system.cast_vote(wallets[0], "budget-2025"))

    assert other.outcome == VoteOutcome.ACCEPTED
    assert other.nullifier != first.nullifier


def test_different_voters_get_different_nullifiers(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    receipts = [asyncio.run(system.cast_vote(w, TOPIC)) for w in wallets[:3]]

    assert all(r.accepted for r in receipts)
    assert len({r.nullifier for r in receipts}) == 3


def test_concurrent_duplicate_attempts_accept_once(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)

    async def race():
        return await asyncio.gather(*[system.cast_vote(wallets[1], TOPIC) for _ in range(5)])

    outcomes = [r.outcome for r in asyncio.run(race())]
    assert outcomes.count(VoteOutcome.ACCEPTED) == 1
    assert outcomes.count(VoteOutcome.REJECTED_DOUBLE_VOTE) == 4


def test_ineligible_voter_gets_synthetic_record(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    record = asyncio.run(system.prepare_vote(wallets[5], TOPIC))

    assert record.path_elements == (PADDING_LEAF,) * 3
    assert record.path_indices == (0, 0, 0)
    assert record.merkle_root == system.tree.root


def test_ineligible_voter_cannot_prove(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    with pytest.raises(ProvingFailure):
        asyncio.run(system.cast_vote(wallets[5], TOPIC))
    assert len(system.registry) == 0


def test_invalid_proof_is_rejected_without_registering(hasher, wallets, tmp_path):
    verifier = FakeVerifier(valid=False)
    system = make_system(hasher, wallets, tmp_path, verifier=verifier)
    receipt = asyncio.run(system.cast_vote(wallets[0], TOPIC))

    assert receipt.outcome == VoteOutcome.REJECTED_INVALID_PROOF
    assert verifier.calls == 1
    assert len(system.registry) == 0


def test_wrong_nullifier_is_rejected(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path,
                         prover=FakeCircuitProver(hasher, nullifier_offset=1))
    receipt = asyncio.run(system.cast_vote(wallets[0], TOPIC))

    assert receipt.outcome == VoteOutcome.REJECTED_INVALID_PROOF
    assert len(system.registry) == 0


def test_accept_proof_checks_root_and_topic(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    good = PublicSignals(nullifier=77, merkle_root=system.tree.root,
                         topic_id_hash=topic_hash(TOPIC), message_hash=5)

    stale = ProofResult(FAKE_PROOF, PublicSignals(77, system.tree.root + 1,
                                                  topic_hash(TOPIC), 5), 0.0)
    receipt = asyncio.run(system.accept_proof(stale, TOPIC))
    assert receipt.outcome == VoteOutcome.REJECTED_INVALID_PROOF

    receipt = asyncio.run(system.accept_proof(ProofResult(FAKE_PROOF, good, 0.0), "budget-2025"))
    assert receipt.outcome == VoteOutcome.REJECTED_INVALID_PROOF

    receipt = asyncio.run(system.accept_proof(ProofResult(FAKE_PROOF, good, 0.0), TOPIC))
    assert receipt.outcome == VoteOutcome.ACCEPTED


def test_per_topic_registry_scope(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path, registry_scope="per_topic")
    signals = PublicSignals(nullifier=77, merkle_root=system.tree.root,
                            topic_id_hash=topic_hash(TOPIC), message_hash=5)
    result = ProofResult(FAKE_PROOF, signals, 0.0)

    assert asyncio.run(system.accept_proof(result, TOPIC)).accepted
    assert not asyncio.run(system.accept_proof(result, TOPIC)).accepted


def test_proving_timeout(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path,
                         prover=FakeCircuitProver(hasher, delay=2.0),
                         proof_timeout=0.05)
    with pytest.raises(ProvingFailure, match="timed out"):
        asyncio.run(system.cast_vote(wallets[0], TOPIC))


def test_signing_failure_propagates(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    with pytest.raises(SigningFailure):
        asyncio.run(system.cast_vote(RefusingWallet(), TOPIC))


def test_input_validation(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    with pytest.raises(MalformedInput):
        asyncio.run(system.cast_vote(wallets[0], TOPIC, "x" * 501))
    with pytest.raises(MalformedInput):
        asyncio.run(system.cast_vote(wallets[0], "not a topic"))


def test_prepare_requires_published_set(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    system.tree = None
    with pytest.raises(MalformedInput):
        asyncio.run(system.prepare_vote(wallets[0], TOPIC))


def test_system_metrics(hasher, wallets, tmp_path):
    system = make_system(hasher, wallets, tmp_path)
    asyncio.run(system.cast_vote(wallets[0], TOPIC))
    metrics = system.get_system_metrics()

    assert metrics['voter_count'] == 3
    assert metrics['nullifiers_registered'] == 1
    assert metrics['merkle_root'] == str(system.tree.root)
    assert 'proof_generation' in metrics['performance']['operations']


def test_from_config_uses_snarkjs(tmp_path):
    config = SystemConfig(log_dir=tmp_path / "logs", results_dir=tmp_path / "results")
    system = AnonymousVotingSystem.from_config(config)
    assert isinstance(system.prover, SnarkjsProver)
    assert isinstance(system.verifier, SnarkjsVerifier)


@pytest.mark.parametrize("field_name", ["message_hash", "merkle_root", "topic_id_hash"])
def test_public_signals_must_match_proof_input(hasher, wallets, tmp_path, field_name):
    def shift(signals):
        return replace(signals, **{field_name: getattr(signals, field_name) + 1})

    verifier = FakeVerifier()
    system = make_system(hasher, wallets, tmp_path, verifier=verifier,
                         prover=FakeCircuitProver(hasher, tamper=shift))
    receipt = asyncio.run(system.cast_vote(wallets[0], TOPIC))

    assert receipt.outcome == VoteOutcome.REJECTED_INVALID_PROOF
    assert "do not match" in receipt.reason
    assert verifier.calls == 0
    assert len(system.registry) == 0


@pytest.mark.parametrize("registry_scope", ["global", "per_topic"])
def test_configured_topic_length_applies_end_to_end(hasher, wallets, tmp_path, registry_scope):
    long_topic = "t" * 80
    system = make_system(hasher, wallets, tmp_path, max_topic_length=100,
                         registry_scope=registry_scope)
    receipt = asyncio.run(system.cast_vote(wallets[0], long_topic))
    assert receipt.outcome == VoteOutcome.ACCEPTED

    strict = make_system(hasher, wallets, tmp_path, max_topic_length=64)
    with pytest.raises(MalformedInput):
        asyncio.run(strict.cast_vote(wallets[0], long_topic))
