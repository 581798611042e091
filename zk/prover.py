"""
Proving collaborators

Thin adapters around the snarkjs CLI. The protocol core never proves or
verifies anything itself; it hands a ProofInputRecord to a ProvingBackend and
a (proof, public signals) pair to a VerificationBackend.
"""

import asyncio
import json
import logging
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from config.config import ZKConfig

from .assembler import ProofInputRecord, PublicSignals
from .errors import MalformedInput, ProvingFailure, VotingProtocolError

logger = logging.getLogger(__name__)

VKEY_REQUIRED_FIELDS = ('vk_alpha_1', 'vk_beta_2', 'vk_gamma_2', 'vk_delta_2', 'IC')
PROOF_REQUIRED_FIELDS = ('pi_a', 'pi_b', 'pi_c')


@dataclass(frozen=True)
class ProofResult:
    proof: Dict[str, Any]
    public_signals: PublicSignals
    generation_time: float


class ProvingBackend(Protocol):
    async def prove(self, record: ProofInputRecord) -> ProofResult:
        ...


class VerificationBackend(Protocol):
    async def verify(self, proof: Dict[str, Any], public_signals: PublicSignals) -> bool:
        ...


class SnarkjsProver:
    """Groth16 proving through `snarkjs groth16 fullprove`"""

    def __init__(self, config: ZKConfig):
        self.config = config

    async def prove(self, record: ProofInputRecord) -> ProofResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._prove_sync, record.to_circuit_input())

    def _prove_sync(self, circuit_input: Dict[str, Any]) -> ProofResult:
        start_time = time.time()

        for artifact in (self.config.wasm_file, self.config.zkey_file):
            if not Path(artifact).exists():
                raise ProvingFailure(f"Circuit artifact not found: {artifact}")

        # Private inputs only ever touch a per-call temporary directory
        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            input_file = temp_path / "input.json"
            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"

            with open(input_file, 'w') as f:
                json.dump(circuit_input, f)

            cmd = [
                self.config.snarkjs_bin, 'groth16', 'fullprove',
                str(input_file),
                str(self.config.wasm_file),
                str(self.config.zkey_file),
                str(proof_file),
                str(public_file)
            ]

            try:
                result = subprocess.run(cmd, capture_output=True, text=True,
                                        timeout=self.config.proof_timeout)
            except subprocess.TimeoutExpired:
                raise ProvingFailure(
                    f"Proof generation timed out after {self.config.proof_timeout}s")
            except OSError as e:
                raise ProvingFailure(f"Could not run snarkjs: {e}") from e

            if result.returncode != 0:
                raise ProvingFailure(f"Proof generation failed: {result.stderr.strip()}")

            try:
                proof = json.loads(proof_file.read_text())
                raw_signals = json.loads(public_file.read_text())
            except (OSError, ValueError) as e:
                raise ProvingFailure(f"Prover produced unreadable output: {e}") from e

        missing = [k for k in PROOF_REQUIRED_FIELDS if k not in proof]
        if missing:
            raise ProvingFailure(f"Proof is missing fields: {', '.join(missing)}")

        try:
            public_signals = PublicSignals.from_list(raw_signals)
        except VotingProtocolError as e:
            raise ProvingFailure(f"Invalid public signals: {e}") from e

        generation_time = time.time() - start_time
        logger.info(f"Generated proof in {generation_time:.2f}s")
        return ProofResult(proof=proof, public_signals=public_signals,
                           generation_time=generation_time)


class SnarkjsVerifier:
    """Groth16 verification through `snarkjs groth16 verify`"""

    def __init__(self, config: ZKConfig):
        self.config = config
        self._vkey: Optional[Dict[str, Any]] = None
        self._vkey_lock = threading.Lock()

    def verification_key(self) -> Dict[str, Any]:
        """Load and cache the verification key"""
        with self._vkey_lock:
            if self._vkey is None:
                path = Path(self.config.vkey_file)
                try:
                    vkey = json.loads(path.read_text())
                except FileNotFoundError:
                    raise MalformedInput(f"Verification key not found: {path}")
                except ValueError as e:
                    raise MalformedInput(f"Invalid JSON in verification key {path}: {e}") from e

                if not isinstance(vkey, dict):
                    raise MalformedInput("Verification key must be a JSON object")
                missing = [k for k in VKEY_REQUIRED_FIELDS if k not in vkey]
                if missing:
                    raise MalformedInput(
                        f"Verification key is missing fields: {', '.join(missing)}")
                self._vkey = vkey
            return self._vkey

    async def verify(self, proof: Dict[str, Any], public_signals: PublicSignals) -> bool:
        vkey = self.verification_key()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._verify_sync, vkey, proof, public_signals)

    def _verify_sync(self, vkey: Dict[str, Any], proof: Dict[str, Any],
                     public_signals: PublicSignals) -> bool:
        start_time = time.time()

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            vkey_file = temp_path / "verification_key.json"
            public_file = temp_path / "public.json"
            proof_file = temp_path / "proof.json"

            vkey_file.write_text(json.dumps(vkey))
            public_file.write_text(json.dumps(public_signals.to_list()))
            proof_file.write_text(json.dumps(proof))

            cmd = [
                self.config.snarkjs_bin, 'groth16', 'verify',
                str(vkey_file),
                str(public_file),
                str(proof_file)
            ]

            try:
                result = subprocess.run(cmd, capture_output=True, text=True,
                                        timeout=self.config.proof_timeout)
            except subprocess.TimeoutExpired:
                raise ProvingFailure(
                    f"Proof verification timed out after {self.config.proof_timeout}s")
            except OSError as e:
                raise ProvingFailure(f"Could not run snarkjs: {e}") from e

        is_valid = result.returncode == 0 and "OK!" in result.stdout
        logger.info(
            f"Verified proof in {time.time() - start_time:.3f}s: {'valid' if is_valid else 'invalid'}")
        return is_valid
