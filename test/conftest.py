"""
Test configuration for Nemo tests
"""

import pytest
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from parsing import create_parser
from semantics import create_analyzer
from interpreter import create_interpreter


@pytest.fixture
def parser():
  """Provide a fresh parser for each test"""
  return create_parser()


@pytest.fixture
def analyzer():
  return create_analyzer()


@pytest.fixture
def nemo():
  """Interpreter with its own global environment"""
  return create_interpreter()


@pytest.fixture
def examples_dir():
  """Get the examples directory path"""
  return project_root / "examples"
