"""Shared fixtures for the nullifier ledger tests"""

import pytest

from config.config import LedgerConfig, ProofConfig, SystemConfig
from nullifier_voting_system import NullifierVotingSystem
from registry.eligibility import EligibilityRegistry
from registry.ledger import NullifierLedger
from zk.credentials import CredentialIssuer
from zk.nullifier import NullifierGenerator
from zk.verifier import ProofVerifier

START_MS = 1_700_000_000_000
TEST_TREE_DEPTH = 8


class FakeClock:
    """Millisecond clock that only moves when told to"""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def proof_config():
    return ProofConfig(eligibility_tree_depth=TEST_TREE_DEPTH)


@pytest.fixture
def ledger_config():
    return LedgerConfig(ledger_tree_depth=TEST_TREE_DEPTH, max_batch_size=4,
                        max_concurrent_submissions=2)


@pytest.fixture
def issuer(clock):
    return CredentialIssuer(clock)


@pytest.fixture
def registry(proof_config, clock):
    return EligibilityRegistry(proof_config, clock=clock)


@pytest.fixture
def generator(proof_config, clock):
    return NullifierGenerator(proof_config, clock=clock)


@pytest.fixture
def verifier(proof_config, clock):
    return ProofVerifier(proof_config, clock=clock)


@pytest.fixture
def ledger(verifier, registry, ledger_config, clock):
    return NullifierLedger(verifier, registry, ledger_config, clock=clock)


@pytest.fixture
def voter(issuer, registry):
    """A credential registered in the fixture registry"""
    credential = issuer.issue()
    return credential.with_membership(registry.register(credential.commitment))


@pytest.fixture
def bundle(generator, voter):
    """Valid bundle from ``voter`` for proposal p1, voting yes"""
    return generator.derive(voter, "p1", 1)


@pytest.fixture
def system(proof_config, ledger_config, clock, tmp_path):
    config = SystemConfig(proof_config=proof_config, ledger_config=ledger_config,
                          log_dir=tmp_path / "logs", results_dir=tmp_path / "results")
    return NullifierVotingSystem(config, clock=clock)
