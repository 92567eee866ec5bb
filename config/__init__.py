"""Configuration management for the nullifier ledger."""

from .config import SystemConfig, ProofConfig, LedgerConfig, load_config, save_config

__all__ = ['SystemConfig', 'ProofConfig', 'LedgerConfig', 'load_config', 'save_config']
