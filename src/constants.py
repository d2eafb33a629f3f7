import os
from pathlib import Path

# Data lives under the user's home unless SCREENTAP_DATA_DIR points elsewhere.
APP_NAME = "Screentap"
APP_DATA_DIR = Path(os.environ.get("SCREENTAP_DATA_DIR", Path.home() / ".screentap"))
DATASET_DIRNAME = "dataset"
DATABASE_FILENAME = "screentap.db"

CAPTURE_INTERVAL_SECS = 15

# Frontmost-app values that mean "nothing usable is in front".
MISSING_FRONTMOST_VALUES = frozenset({"", "missing value", "unknown"})
