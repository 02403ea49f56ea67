import os
import sys

import pytest

# Make the packages importable without installation
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ledger_fixtures import LedgerHarness  # noqa: E402


@pytest.fixture
def harness():
    return LedgerHarness()


@pytest.fixture
def client(harness):
    from fastapi.testclient import TestClient
    from ledger_service import main
    from sovereign_ledger import CallerAuthenticator
    
    main.init_core(harness.core, CallerAuthenticator(harness.caller_registry))
    yield TestClient(main.app)
    main.CORE = None
    main.AUTHENTICATOR = None
