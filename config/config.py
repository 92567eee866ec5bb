from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yaml")


@dataclass
class ProofConfig:
    backend: str = "poseidon-transcript"
    max_skew_ms: int = 3_600_000  # 1 hour either side of the verifier clock
    max_proposal_id_length: int = 64
    proposal_id_pattern: str = r"^[A-Za-z0-9_-]+$"
    eligibility_tree_depth: int = 20

    def __post_init__(self):
        if self.max_skew_ms < 0:
            raise ValueError("max_skew_ms must be non-negative")
        if self.max_proposal_id_length < 1:
            raise ValueError("max_proposal_id_length must be positive")


@dataclass
class LedgerConfig:
    ledger_tree_depth: int = 20
    max_batch_size: int = 100
    max_concurrent_submissions: int = 10
    submit_timeout: Optional[float] = None  # seconds, per submission
    enable_performance_monitoring: bool = False

    def __post_init__(self):
        if self.max_batch_size < 1 or self.max_concurrent_submissions < 1:
            raise ValueError("Batch size and concurrency must be positive")


@dataclass
class SystemConfig:
    proof_config: ProofConfig = field(default_factory=ProofConfig)
    ledger_config: LedgerConfig = field(default_factory=LedgerConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

        if self.enable_debug_mode:
            self.log_level = "DEBUG"


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        return SystemConfig()

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        proof_data = config_data.get('proofs', {})
        proof_config = ProofConfig(
            backend=proof_data.get('backend', 'poseidon-transcript'),
            max_skew_ms=int(proof_data.get('max_skew_ms', 3_600_000)),
            max_proposal_id_length=int(
                proof_data.get('max_proposal_id_length', 64)),
            proposal_id_pattern=proof_data.get(
                'proposal_id_pattern', r"^[A-Za-z0-9_-]+$"),
            eligibility_tree_depth=int(
                proof_data.get('eligibility_tree_depth', 20))
        )

        ledger_data = config_data.get('ledger', {})
        ledger_config = LedgerConfig(
            ledger_tree_depth=int(ledger_data.get('ledger_tree_depth', 20)),
            max_batch_size=int(ledger_data.get('max_batch_size', 100)),
            max_concurrent_submissions=int(
                ledger_data.get('max_concurrent_submissions', 10)),
            submit_timeout=ledger_data.get('submit_timeout'),
            enable_performance_monitoring=ledger_data.get(
                'enable_performance_monitoring', False)
        )

        return SystemConfig(
            proof_config=proof_config,
            ledger_config=ledger_config,
            log_dir=Path(config_data.get('log_dir', 'logs')),
            log_level=config_data.get('log_level', 'INFO'),
            results_dir=Path(config_data.get('results_dir', 'results')),
            enable_debug_mode=config_data.get('enable_debug_mode', False)
        )
    except (OSError, yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Could not load config file {config_path}: {e}")
        logger.warning("Using default configuration")

    return SystemConfig()


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_data = {
        'proofs': {
            'backend': config.proof_config.backend,
            'max_skew_ms': config.proof_config.max_skew_ms,
            'max_proposal_id_length': config.proof_config.max_proposal_id_length,
            'proposal_id_pattern': config.proof_config.proposal_id_pattern,
            'eligibility_tree_depth': config.proof_config.eligibility_tree_depth
        },
        'ledger': {
            'ledger_tree_depth': config.ledger_config.ledger_tree_depth,
            'max_batch_size': config.ledger_config.max_batch_size,
            'max_concurrent_submissions': config.ledger_config.max_concurrent_submissions,
            'submit_timeout': config.ledger_config.submit_timeout,
            'enable_performance_monitoring': config.ledger_config.enable_performance_monitoring
        },
        'log_dir': str(config.log_dir),
        'log_level': config.log_level,
        'results_dir': str(config.results_dir),
        'enable_debug_mode': config.enable_debug_mode
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
