import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CHAIN_ID_ENV = 'VOTING_CHAIN_ID'
VERIFYING_CONTRACT_ENV = 'VOTING_VERIFYING_CONTRACT'
TREE_DEPTH_ENV = 'VOTING_TREE_DEPTH'

REGISTRY_SCOPES = ('global', 'per_topic')


@dataclass
class ZKConfig:
    tree_depth: int = 7
    circuit_name: str = "vote"
    build_dir: Path = field(default_factory=lambda: Path("circuits/build"))
    wasm_file: Optional[Path] = None
    zkey_file: Optional[Path] = None
    vkey_file: Optional[Path] = None
    poseidon_params_file: Optional[Path] = None
    snarkjs_bin: str = "snarkjs"
    proof_timeout: int = 120

    def __post_init__(self):
        self.build_dir = Path(self.build_dir)

        # Default artifact locations follow the circom build layout
        if self.wasm_file is None:
            self.wasm_file = self.build_dir / f"{self.circuit_name}_js" / f"{self.circuit_name}.wasm"
        if self.zkey_file is None:
            self.zkey_file = self.build_dir / f"{self.circuit_name}_final.zkey"
        if self.vkey_file is None:
            self.vkey_file = self.build_dir / "verification_key.json"

        self.wasm_file = Path(self.wasm_file)
        self.zkey_file = Path(self.zkey_file)
        self.vkey_file = Path(self.vkey_file)
        if self.poseidon_params_file is not None:
            self.poseidon_params_file = Path(self.poseidon_params_file)

        if not 1 <= int(self.tree_depth) <= 32:
            raise ValueError(f"tree_depth must be between 1 and 32, got {self.tree_depth}")
        if self.proof_timeout <= 0:
            raise ValueError(f"proof_timeout must be positive, got {self.proof_timeout}")
        self.tree_depth = int(self.tree_depth)


@dataclass
class SigningConfig:
    chain_id: int = 1
    verifying_contract: str = "0x" + "00" * 20
    max_topic_length: int = 64
    default_topic: str = "vote-topic-2024"

    def __post_init__(self):
        self.chain_id = int(self.chain_id)
        if self.chain_id <= 0:
            raise ValueError(f"chain_id must be positive, got {self.chain_id}")


@dataclass
class SystemConfig:
    zk_config: ZKConfig = field(default_factory=ZKConfig)
    signing_config: SigningConfig = field(default_factory=SigningConfig)

    registry_scope: str = "global"
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

        if self.registry_scope not in REGISTRY_SCOPES:
            raise ValueError(
                f"registry_scope must be one of {REGISTRY_SCOPES}, got {self.registry_scope!r}")

    def ensure_directories(self):
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)


def apply_env_overrides(config: SystemConfig) -> SystemConfig:
    """Environment variables take precedence over file values"""
    chain_id = os.environ.get(CHAIN_ID_ENV)
    if chain_id is not None:
        config.signing_config.chain_id = int(chain_id)

    contract = os.environ.get(VERIFYING_CONTRACT_ENV)
    if contract is not None:
        config.signing_config.verifying_contract = contract

    depth = os.environ.get(TREE_DEPTH_ENV)
    if depth is not None:
        depth = int(depth)
        if not 1 <= depth <= 32:
            raise ValueError(f"{TREE_DEPTH_ENV} must be between 1 and 32, got {depth}")
        config.zk_config.tree_depth = depth

    return config


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    config = None
    if config_path.exists():
        try:
            import yaml

            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}

            zk_data = config_data.get('zk_proofs', {})
            zk_config = ZKConfig(
                tree_depth=zk_data.get('tree_depth', 7),
                circuit_name=zk_data.get('circuit_name', 'vote'),
                build_dir=Path(zk_data.get('build_dir', 'circuits/build')),
                wasm_file=zk_data.get('wasm_file'),
                zkey_file=zk_data.get('zkey_file'),
                vkey_file=zk_data.get('vkey_file'),
                poseidon_params_file=zk_data.get('poseidon_params_file'),
                snarkjs_bin=zk_data.get('snarkjs_bin', 'snarkjs'),
                proof_timeout=zk_data.get('proof_timeout', 120)
            )

            signing_data = config_data.get('signing', {})
            signing_config = SigningConfig(
                chain_id=signing_data.get('chain_id', 1),
                verifying_contract=signing_data.get(
                    'verifying_contract', "0x" + "00" * 20),
                max_topic_length=signing_data.get('max_topic_length', 64),
                default_topic=signing_data.get('default_topic', 'vote-topic-2024')
            )

            config = SystemConfig(
                zk_config=zk_config,
                signing_config=signing_config,
                registry_scope=config_data.get('registry_scope', 'global'),
                log_dir=Path(config_data.get('log_dir', 'logs')),
                results_dir=Path(config_data.get('results_dir', 'results')),
                enable_debug_mode=config_data.get('enable_debug_mode', False)
            )
        except Exception as e:
            logger.warning(f"Could not load config file {config_path}: {e}")
            logger.warning("Using default configuration")

    if config is None:
        config = SystemConfig()

    return apply_env_overrides(config)


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    import yaml

    zk = config.zk_config
    config_data = {
        'zk_proofs': {
            'tree_depth': zk.tree_depth,
            'circuit_name': zk.circuit_name,
            'build_dir': str(zk.build_dir),
            'wasm_file': str(zk.wasm_file),
            'zkey_file': str(zk.zkey_file),
            'vkey_file': str(zk.vkey_file),
            'poseidon_params_file': (str(zk.poseidon_params_file)
                                     if zk.poseidon_params_file else None),
            'snarkjs_bin': zk.snarkjs_bin,
            'proof_timeout': zk.proof_timeout
        },
        'signing': {
            'chain_id': config.signing_config.chain_id,
            'verifying_contract': config.signing_config.verifying_contract,
            'max_topic_length': config.signing_config.max_topic_length,
            'default_topic': config.signing_config.default_topic
        },
        'registry_scope': config.registry_scope,
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'enable_debug_mode': config.enable_debug_mode
    }

    Path(config_path).parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
    logger.info(f"Configuration saved to {config_path}")
