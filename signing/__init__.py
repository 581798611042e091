"""EIP-712 vote signing and the local secp256k1 signing collaborator."""

from .eip712 import (
    Domain,
    VoteSignature,
    create_domain,
    create_vote_message,
    recover_signer,
    sign_vote,
    signature_to_field_elements,
    typed_data_hash,
)
from .wallet import LocalWallet, generate_voter_accounts, wallet_from_record

__all__ = [
    'Domain',
    'VoteSignature',
    'create_domain',
    'create_vote_message',
    'recover_signer',
    'sign_vote',
    'signature_to_field_elements',
    'typed_data_hash',
    'LocalWallet',
    'generate_voter_accounts',
    'wallet_from_record',
]
