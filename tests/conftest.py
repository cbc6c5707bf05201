import os
import tempfile

# api.main builds its loop at import time; keep that state out of the working tree.
_STATE_DIR = tempfile.mkdtemp(prefix="qloop-tests-")
os.environ.setdefault("QLOOP_DB_URL", f"sqlite:///{_STATE_DIR}/state.db")
os.environ.setdefault("QLOOP_ENVIRONMENT", "test")
