"""
Shared fixtures for provenance engine tests.
"""

import pytest

from provenance_engine.config import ProvenanceConfig
from provenance_engine.mock import InMemoryLogSource
from provenance_engine.service import ProvenanceService


ALICE = "0x00000000000000000000000000000000000000a1"
BOB = "0x00000000000000000000000000000000000000b2"
CAROL = "0x00000000000000000000000000000000000000c3"


@pytest.fixture
def config() -> ProvenanceConfig:
    """Small windows and no backoff sleeps."""
    return ProvenanceConfig(
        window_blocks=1_000,
        max_range_blocks=10_000,
        chunk_size_blocks=500,
        max_retries=3,
        retry_backoff_initial=0.0,
        max_concurrent_lookups=4,
        cache_ttl_seconds=60.0,
    )


@pytest.fixture
def ledger() -> InMemoryLogSource:
    return InMemoryLogSource(head=900)


@pytest.fixture
def asset_seven(ledger: InMemoryLogSource) -> InMemoryLogSource:
    """Asset 7: minted to Alice, then Alice -> Bob -> Carol."""
    ledger.mint(7, ALICE, block_number=10, timestamp=100, crop_type="Maize", quantity=500)
    ledger.transfer(7, ALICE, BOB, block_number=15, timestamp=150)
    ledger.transfer(7, BOB, CAROL, block_number=20, timestamp=200)
    return ledger


@pytest.fixture
def service(ledger: InMemoryLogSource, config: ProvenanceConfig) -> ProvenanceService:
    return ProvenanceService(ledger, config, contract_address=ledger.contract)
