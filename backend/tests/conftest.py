import asyncio
import inspect
import pathlib
import sys

import pytest
from sqlalchemy.pool import NullPool

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stock_tracker.db.session import Database  # noqa: E402
from stock_tracker.providers.market_data import InMemoryMarketData  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            funcargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**funcargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def database(tmp_path: pathlib.Path) -> Database:
    """File-backed SQLite database; tests call ``create_all`` inside their loop."""

    return Database(url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", poolclass=NullPool)


@pytest.fixture
def market_data() -> InMemoryMarketData:
    data = InMemoryMarketData()
    data.add_quote("AAPL", "190", previous_close="188", short_name="Apple Inc.")
    data.add_quote("MSFT", "410", previous_close="405", short_name="Microsoft Corporation")
    data.add_quote("VOD.L", "70", short_name="Vodafone Group")
    return data

