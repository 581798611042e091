#!/usr/bin/env python3
"""
Anonymous Voting Pipeline
=========================
Ties the protocol core to its collaborators:

1. Publisher commits to the eligible-voter set (Merkle root)
2. Voter signs the topic vote deterministically (EIP-712)
3. Proof input record is assembled (real or synthetic membership path)
4. Proving engine produces the proof and public signals
5. Verifier checks the proof and the nullifier registry gates double votes
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from config.config import SystemConfig
from signing.eip712 import sign_vote, validate_topic_id, validate_vote_message
from utils.utils import PerformanceMonitor, timed
from zk.assembler import ProofInputRecord, PublicSignals, assemble
from zk.errors import MalformedInput, ProvingFailure
from zk.merkle import MerkleTree, SyntheticPath, build_tree, membership_path
from zk.nullifier import (InMemoryNullifierRegistry, NullifierRegistry,
                          RegistryDecision, RegistryScope, derive_nullifier,
                          topic_hash)
from zk.poseidon import PoseidonHasher
from zk.prover import (ProofResult, ProvingBackend, SnarkjsProver,
                       SnarkjsVerifier, VerificationBackend)

logger = logging.getLogger(__name__)


class VoteOutcome(Enum):
    ACCEPTED = "accepted"
    REJECTED_DOUBLE_VOTE = "rejected_double_vote"
    REJECTED_INVALID_PROOF = "rejected_invalid_proof"


@dataclass(frozen=True)
class VoteReceipt:
    """Result of one vote attempt"""
    outcome: VoteOutcome
    topic_id: str
    merkle_root: int
    nullifier: Optional[int] = None
    proof: Optional[ProofResult] = None
    reason: Optional[str] = None
    vote_message: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def accepted(self) -> bool:
        return self.outcome == VoteOutcome.ACCEPTED


class AnonymousVotingSystem:
    """
    In-process vote pipeline.

    The hasher, collaborators and registry are passed in explicitly; the
    registry is the only mutable state shared between concurrent attempts.
    """

    def __init__(self, config: SystemConfig, hasher: PoseidonHasher,
                 prover: ProvingBackend, verifier: VerificationBackend,
                 registry: Optional[NullifierRegistry] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.config = config
        self.hasher = hasher
        self.prover = prover
        self.verifier = verifier
        self.registry = registry or InMemoryNullifierRegistry(
            RegistryScope(config.registry_scope),
            max_topic_length=config.signing_config.max_topic_length)
        self.monitor = monitor
        self.tree: Optional[MerkleTree] = None

    @classmethod
    def from_config(cls, config: SystemConfig,
                    monitor: Optional[PerformanceMonitor] = None) -> 'AnonymousVotingSystem':
        """Pipeline wired to snarkjs with the configured circuit artifacts"""
        zk_config = config.zk_config
        if zk_config.poseidon_params_file is not None:
            hasher = PoseidonHasher.from_params_file(zk_config.poseidon_params_file)
        else:
            hasher = PoseidonHasher()
        return cls(config, hasher, SnarkjsProver(zk_config),
                   SnarkjsVerifier(zk_config), monitor=monitor)

    def publish_voter_set(self, addresses: Sequence[str]) -> MerkleTree:
        with timed(self.monitor, 'tree_build'):
            tree = build_tree(addresses, self.config.zk_config.tree_depth, self.hasher)
        self.tree = tree
        logger.info(f"Published voter set: {tree.leaf_count} voters, root {tree.root}")
        return tree

    def _require_tree(self) -> MerkleTree:
        if self.tree is None:
            raise MalformedInput("No voter set has been published")
        return self.tree

    async def prepare_vote(self, wallet, topic_id: str) -> ProofInputRecord:
        """Sign the vote and assemble the proof input for wallet"""
        tree = self._require_tree()
        signing = self.config.signing_config
        validate_topic_id(topic_id, signing.max_topic_length)

        loop = asyncio.get_running_loop()
        signature = await loop.run_in_executor(None, functools.partial(
            sign_vote, wallet, topic_id,
            chain_id=signing.chain_id,
            verifying_contract=signing.verifying_contract,
            max_topic_length=signing.max_topic_length))

        path = membership_path(tree, wallet.address)
        if isinstance(path, SyntheticPath):
            logger.warning("Voter is not in the published set; the proof will not verify")

        return assemble(wallet.address, topic_id, path, signature, tree.root, tree.depth,
                        max_topic_length=signing.max_topic_length)

    async def cast_vote(self, wallet, topic_id: str,
                        vote_message: Optional[str] = None) -> VoteReceipt:
        """Run one full vote attempt; collaborator failures propagate"""
        if vote_message is not None:
            validate_vote_message(vote_message)

        record = await self.prepare_vote(wallet, topic_id)

        timeout = self.config.zk_config.proof_timeout
        with timed(self.monitor, 'proof_generation'):
            try:
                result = await asyncio.wait_for(self.prover.prove(record), timeout=timeout)
            except asyncio.TimeoutError:
                raise ProvingFailure(f"Proof generation timed out after {timeout}s")

        signals = result.public_signals
        if not signals.matches(record):
            return self._reject(VoteOutcome.REJECTED_INVALID_PROOF, topic_id,
                                "Public signals do not match the proof input",
                                signals, result, vote_message)

        sig_r, sig_s = record.signature_scalars()
        expected = derive_nullifier(sig_r, sig_s, record.topic_id,
                                    record.message_hash, self.hasher)
        if signals.nullifier != expected:
            return self._reject(VoteOutcome.REJECTED_INVALID_PROOF, topic_id,
                                "Nullifier does not match the signed vote",
                                signals, result, vote_message)

        return await self.accept_proof(result, topic_id, vote_message)

    async def accept_proof(self, result: ProofResult, topic_id: str,
                           vote_message: Optional[str] = None) -> VoteReceipt:
        """
        Verifier-side acceptance of a proof for topic_id.

        Checks the public signals are bound to the published root and to the
        topic, verifies the proof, then registers the nullifier.
        """
        tree = self._require_tree()
        signals: PublicSignals = result.public_signals

        if signals.merkle_root != tree.root:
            return self._reject(VoteOutcome.REJECTED_INVALID_PROOF, topic_id,
                                "Proof is for a different voter set",
                                signals, result, vote_message)
        max_length = self.config.signing_config.max_topic_length
        if signals.topic_id_hash != topic_hash(topic_id, max_length):
            return self._reject(VoteOutcome.REJECTED_INVALID_PROOF, topic_id,
                                "Proof is for a different topic",
                                signals, result, vote_message)

        with timed(self.monitor, 'proof_verification'):
            is_valid = await self.verifier.verify(result.proof, signals)
        if not is_valid:
            return self._reject(VoteOutcome.REJECTED_INVALID_PROOF, topic_id,
                                "Proof verification failed",
                                signals, result, vote_message)

        decision = self.registry.check_and_insert(signals.nullifier, topic_id)
        if decision == RegistryDecision.DOUBLE_VOTE:
            return self._reject(VoteOutcome.REJECTED_DOUBLE_VOTE, topic_id,
                                "Nullifier already used",
                                signals, result, vote_message)

        logger.info(f"Vote accepted on topic {topic_id}")
        return VoteReceipt(
            outcome=VoteOutcome.ACCEPTED,
            topic_id=topic_id,
            merkle_root=signals.merkle_root,
            nullifier=signals.nullifier,
            proof=result,
            vote_message=vote_message,
        )

    def _reject(self, outcome: VoteOutcome, topic_id: str, reason: str,
                signals: PublicSignals, result: ProofResult,
                vote_message: Optional[str]) -> VoteReceipt:
        logger.warning(f"Vote rejected on topic {topic_id}: {reason}")
        return VoteReceipt(
            outcome=outcome,
            topic_id=topic_id,
            merkle_root=signals.merkle_root,
            nullifier=signals.nullifier,
            proof=result,
            reason=reason,
            vote_message=vote_message,
        )

    def get_system_metrics(self) -> Dict[str, Any]:
        tree = self.tree
        return {
            'voter_count': tree.leaf_count if tree else 0,
            'tree_depth': self.config.zk_config.tree_depth,
            'merkle_root': str(tree.root) if tree else None,
            'nullifiers_registered': len(self.registry),
            'performance': self.monitor.get_summary() if self.monitor else None,
        }
