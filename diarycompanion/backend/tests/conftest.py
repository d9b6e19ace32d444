import os
import tempfile
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="diarycompanion-tests-"))

os.environ.setdefault("DIARY_DB_PATH", str(_TMP_DIR / "test.db"))
os.environ.setdefault("DIARY_KDF_ITERATIONS", "1000")
os.environ.setdefault("DIARY_STORAGE_PASSWORD", "test-storage-password")
os.environ.setdefault("DIARY_SECRET_KEY", "test-secret")
os.environ.pop("DIARY_LLM_API_KEY", None)
os.environ.pop("OPENAI_API_KEY", None)
