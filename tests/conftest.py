import os

# Keep config loading and command scoping independent of the developer's shell
os.environ.setdefault("SLOTPILOT_MODE", "test")
os.environ.pop("SLOTPILOT_CONFIG", None)
os.environ.pop("SLOTPILOT_REDIS_URL", None)

from tests.fixtures import *  # noqa: F401,F403,E402
