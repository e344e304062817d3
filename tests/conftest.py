"""Shared test setup."""

import os

os.environ.setdefault("LOG_TO_FILE", "false")
