import os
import tempfile

# Must run before grammar_quiz is imported: settings and the engine are built at import time
_tmp_dir = tempfile.mkdtemp(prefix="grammar-quiz-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["AUTH_SECRET_KEY"] = "test-secret"
