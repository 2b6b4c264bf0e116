"""
Pytest bootstrap.
Settings are read at import time, so the testing environment must be set
before any project module is imported.
"""
import os

os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("LOG_LEVEL", "DEBUG")
