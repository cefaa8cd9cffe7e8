import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="harvestlink-tests-")

os.environ["ENV"] = "dev"
os.environ["DB_URL"] = f"sqlite:///{os.path.join(_tmp, 'harvestlink.db')}"
os.environ["AUTO_CREATE_SCHEMA"] = "true"
os.environ["AUTO_COMPLETE_POLL_SECS"] = "0"
os.environ["RL_DISABLED"] = "true"
os.environ["NOTIFY_MODE"] = "log"
os.environ["MEDIA_DIR"] = os.path.join(_tmp, "media")
