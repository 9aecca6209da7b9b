"""Shared fixtures for calorimeter tests."""
from __future__ import annotations

import os
import sys

ROOT = os.path.join(os.path.dirname(__file__), "..")

# Project root for tests.helpers, src/ for running without an install.
sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.join(ROOT, "src"))
