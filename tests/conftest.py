"""
tradegate test configuration.

Fixtures wire the in-memory fakes from fakes.py into real gate, ledger and
orchestrator instances.
"""

import tempfile
from pathlib import Path

import pytest

from fakes import FakeClock, FakeMarket, FakeRouter, FakeWallet
from tradegate.config import TradeGateConfig
from tradegate.ledger import PositionLedger
from tradegate.orchestrator import TradeDecisionOrchestrator
from tradegate.safe_state import SafeState
from tradegate.safety_gate import TradeSafetyGate


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def router():
    return FakeRouter()


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def config(temp_dir):
    return TradeGateConfig(positions_file=temp_dir / "positions.json")


@pytest.fixture
def gate(router, wallet, config, clock):
    return TradeSafetyGate(router, wallet, config, clock=clock)


@pytest.fixture
def ledger(config, clock):
    return PositionLedger(state=SafeState(config.positions_file), clock=clock)


@pytest.fixture
def orchestrator(gate, ledger, router, market, config):
    return TradeDecisionOrchestrator(gate, ledger, router, market, config)
