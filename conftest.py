import os
import tempfile

# settings are read once at import; point them at throwaway paths first
_tmp = tempfile.mkdtemp(prefix="beach-cleanup-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_tmp, 'test.db')}")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_tmp, "uploads"))
os.environ.setdefault("LOG_LEVEL", "WARNING")
