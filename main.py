#!/usr/bin/env python3
import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from config.config import load_config
from signing.eip712 import validate_vote_message
from signing.wallet import LocalWallet, generate_voter_accounts, wallet_from_record
from utils.utils import (PerformanceMonitor, format_duration, save_results,
                         setup_logging, timed)
from voting_system import AnonymousVotingSystem
from zk.artifacts import (load_proof_file, load_voter_set, proof_file_to_dict,
                          read_json_file, tree_from_dict, tree_to_dict,
                          write_json_file)
from zk.errors import VotingProtocolError
from zk.prover import ProofResult

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNTS_FILE = Path("data/accounts.json")
DEFAULT_VOTERS_FILE = Path("data/valid-voters.json")
DEFAULT_TREE_FILE = Path("data/merkle-tree.json")
DEFAULT_PROOF_FILE = Path("build/latest-proof.json")


def cmd_generate_accounts(args, config) -> int:
    accounts = generate_voter_accounts(args.count)
    write_json_file(args.accounts, accounts)
    write_json_file(args.voters, [{'index': a['index'], 'address': a['address']}
                                  for a in accounts])
    print(f"Generated {len(accounts)} accounts")
    print(f"  Private keys: {args.accounts}")
    print(f"  Voter set:    {args.voters}")
    return 0


def _load_system(args, config) -> AnonymousVotingSystem:
    system = AnonymousVotingSystem.from_config(config, monitor=PerformanceMonitor())
    system.tree = tree_from_dict(read_json_file(args.tree), system.hasher)
    return system


def _save_report(system, config, command: str, payload) -> Path:
    """Write the run report and operation timings into the results directory"""
    stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    report_path = config.results_dir / f"{command}_report_{stamp}.json"
    save_results({**payload, 'system_metrics': system.get_system_metrics()}, report_path)
    system.monitor.save_metrics(config.results_dir / f"{command}_metrics_{stamp}.json")
    return report_path


def cmd_build_tree(args, config) -> int:
    addresses = load_voter_set(args.voters)
    system = AnonymousVotingSystem.from_config(config)
    tree = system.publish_voter_set(addresses)
    write_json_file(args.tree, tree_to_dict(tree))
    print(f"Merkle tree built: depth {tree.depth}, {tree.leaf_count}/{tree.capacity} leaves")
    print(f"  Root: {tree.root}")
    print(f"  Saved to: {args.tree}")
    return 0


async def _prove(args, config) -> int:
    system = _load_system(args, config)
    topic = args.topic or config.signing_config.default_topic
    validate_vote_message(args.message)

    if args.invalid:
        wallet = LocalWallet.create_random()
    else:
        accounts = read_json_file(args.accounts, is_array=True, non_empty=True)
        if not 0 <= args.voter_index < len(accounts):
            print(f"Voter index must be between 0 and {len(accounts) - 1}")
            return 1
        wallet = wallet_from_record(accounts[args.voter_index])

    record = await system.prepare_vote(wallet, topic)
    synthetic = system.tree.index_of(wallet.address) is None
    with timed(system.monitor, 'proof_generation'):
        result = await system.prover.prove(record)

    metadata = {
        'voterIndex': None if args.invalid else args.voter_index,
        'voterAddress': wallet.address,
        'topicId': topic,
        'voteMessage': args.message,
        'timestamp': datetime.now().isoformat(),
        'isInvalidVoter': synthetic,
        'nullifier': str(result.public_signals.nullifier),
    }
    write_json_file(args.proof, proof_file_to_dict(result, metadata))
    report_path = _save_report(system, config, 'prove',
                               {'metadata': metadata, 'result': result})

    print(f"Proof generated in {format_duration(result.generation_time)}")
    print(f"  Nullifier: {result.public_signals.nullifier}")
    print(f"  Saved to: {args.proof}")
    print(f"  Report: {report_path}")
    return 0


async def _verify(args, config) -> int:
    system = _load_system(args, config)
    proof, signals, metadata = load_proof_file(args.proof)
    topic = args.topic or metadata.get('topicId') or config.signing_config.default_topic

    receipt = await system.accept_proof(
        ProofResult(proof=proof, public_signals=signals, generation_time=0.0), topic)

    print(f"Outcome: {receipt.outcome.value}")
    if receipt.reason:
        print(f"  Reason: {receipt.reason}")
    report_path = _save_report(system, config, 'verify', {'receipt': receipt})
    print(f"  Report: {report_path}")
    return 0 if receipt.accepted else 1


def main():
    parser = argparse.ArgumentParser(
        description='Anonymous sybil-resistant voting engine')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--log-level', type=str, default='INFO')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('generate-accounts', help='Create voter accounts')
    p.add_argument('--count', type=int, default=10)
    p.add_argument('--accounts', type=Path, default=DEFAULT_ACCOUNTS_FILE)
    p.add_argument('--voters', type=Path, default=DEFAULT_VOTERS_FILE)

    p = sub.add_parser('build-tree', help='Build and publish the voter Merkle tree')
    p.add_argument('--voters', type=Path, default=DEFAULT_VOTERS_FILE)
    p.add_argument('--tree', type=Path, default=DEFAULT_TREE_FILE)

    p = sub.add_parser('prove', help='Sign a vote and generate its proof')
    p.add_argument('voter_index', type=int)
    p.add_argument('message', type=str)
    p.add_argument('--topic', type=str, default=None)
    p.add_argument('--invalid', action='store_true',
                   help='Vote with a fresh key outside the voter set')
    p.add_argument('--accounts', type=Path, default=DEFAULT_ACCOUNTS_FILE)
    p.add_argument('--tree', type=Path, default=DEFAULT_TREE_FILE)
    p.add_argument('--proof', type=Path, default=DEFAULT_PROOF_FILE)

    p = sub.add_parser('verify', help='Verify a proof and register its nullifier')
    p.add_argument('proof', type=Path, nargs='?', default=DEFAULT_PROOF_FILE)
    p.add_argument('--topic', type=str, default=None)
    p.add_argument('--tree', type=Path, default=DEFAULT_TREE_FILE)

    args = parser.parse_args()

    config = load_config(Path(args.config))
    config.ensure_directories()
    log_level = 'DEBUG' if config.enable_debug_mode else args.log_level
    setup_logging(log_level, config.log_dir / "voting_engine.log")

    try:
        if args.command == 'generate-accounts':
            code = cmd_generate_accounts(args, config)
        elif args.command == 'build-tree':
            code = cmd_build_tree(args, config)
        elif args.command == 'prove':
            code = asyncio.run(_prove(args, config))
        else:
            code = asyncio.run(_verify(args, config))
    except VotingProtocolError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}")
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
