import os
import sys
import tempfile
from itertools import count
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# taskbud.main builds its module-level app from the environment on import;
# keep it away from the working directory and from any real backends.
os.environ["TASKBUD_DATA_DIR"] = tempfile.mkdtemp(prefix="taskbud-tests-")
for name in ("TASKBUD_MANAGED", "NETLIFY", "TASKBUD_REMOTE_URL", "TASKBUD_BLOB_BACKEND"):
    os.environ.pop(name, None)

from fakes import FakeBlobStore  # noqa: E402


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def sequential_ids():
    counter = count(1)
    return lambda: f"task-{next(counter)}"
