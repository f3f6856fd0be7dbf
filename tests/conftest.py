import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before any import that might build the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
# Cheap argon2 parameters keep the suite fast
os.environ.setdefault("PASSWORD_TIME_COST", "1")
os.environ.setdefault("PASSWORD_MEMORY_COST", "8")
os.environ.setdefault("PASSWORD_PARALLELISM", "1")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from tokengate.config import Settings  # noqa: E402
from tokengate.service.auth import AuthService  # noqa: E402
from tokengate.service.runtime import reset_runtime_for_tests  # noqa: E402
from tokengate.storage.memory import MemoryStore  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    """Settings with the default vocabulary and cheap hashing."""
    return Settings(
        password_time_cost=1,
        password_memory_cost=8,
        password_parallelism=1,
        use_memory_store=True,
        test_mode=True,
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def auth_service(memory_store, settings):
    return AuthService(memory_store, settings)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
