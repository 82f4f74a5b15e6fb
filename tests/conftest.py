import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
TESTS_DIR = PROJECT_ROOT / "tests"
for path in (SRC_DIR, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a module-level exit event bound to the first loop."""

    import sse_starlette.sse as sse_module

    app_status = getattr(sse_module, "AppStatus", None)
    if hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield
    if hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
