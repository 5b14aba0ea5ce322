import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from prism_lib import config  # noqa: E402


@pytest.fixture(autouse=True)
def reset_prism_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate config/state env between tests."""

    for var in (
        "MONGODB_URI",
        "COSMOS_CONNECTION_STRING",
        "COSMOS_DATABASE_NAME",
        "PRISM_TOKEN",
        "PRISM_API_URL",
        "PRISM_AUTH_TOKENS",
        "PRISM_MCP_SERVER_PATH",
        "PRISM_DEBUG",
        "PRISM_HTTP_HOST",
        "PRISM_HTTP_PORT",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("PRISM_CONFIG_HOME", str(tmp_path / ".prism-config"))
    config.config_home.cache_clear()
