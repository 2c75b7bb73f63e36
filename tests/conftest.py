import os
import tempfile

# must be set before config is first imported
os.environ.setdefault("LEDGERLENS_DATA_DIR", tempfile.mkdtemp(prefix="ledgerlens-tests-"))
os.environ.setdefault("LEDGERLENS_TIMEZONE", "Europe/Berlin")
