"""
Error taxonomy for the voting protocol core.

Every failure is raised to the immediate caller as one of these types; nothing
is clamped, reduced or retried on the caller's behalf.
"""


class VotingProtocolError(Exception):
    """Base exception for protocol operations"""
    pass


class MalformedInput(VotingProtocolError, ValueError):
    """Wrong shape, type or character set"""
    pass


class OutOfRange(VotingProtocolError, ValueError):
    """Field element or ECDSA scalar outside its modulus"""
    pass


class CapacityExceeded(VotingProtocolError):
    """Voter set larger than the tree depth allows"""
    pass


class DuplicateEntry(VotingProtocolError):
    """Voter identity appears more than once"""
    pass


class IndexOutOfRange(VotingProtocolError, IndexError):
    """Leaf index outside the tree"""
    pass


class ShapeMismatch(VotingProtocolError):
    """Proof arrays do not have the expected length"""
    pass


class SigningFailure(VotingProtocolError):
    """Signing collaborator failed"""
    pass


class ProvingFailure(VotingProtocolError):
    """Proving or verification collaborator failed"""
    pass
