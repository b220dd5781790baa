"""Shared fixtures for vs-demo tests."""

import pytest

from vs_demo.config import DemoConfig, resolve_network
from vs_demo.runstate import RunState

from fakes import AGENT_DID, FakeClock, FakeIndexer, FakeSession, FakeVSAgent


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """Testnet configuration writing its run state under tmp_path."""
    return DemoConfig(
        network=resolve_network("testnet"),
        vs_agent_data_dir=str(tmp_path / "data"),
        egf_doc_url="https://example.org/egf.pdf",
        egf_doc_digest="sha384-abc",
        output_file=str(tmp_path / "ids.env"),
    )


@pytest.fixture
def state(config):
    return RunState(config.output_file, network=config.network.name)


@pytest.fixture
def agent(session, config):
    """The local VS Agent."""
    return FakeVSAgent(session, config.admin_api, config.public_api, did=AGENT_DID)


@pytest.fixture
def indexer(session, config):
    return FakeIndexer(session, config.network.indexer_url)
