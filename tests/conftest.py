# tests/conftest.py
#
# Project-wide fixtures. Also puts the project root on sys.path so that
# `universe_terminal` and `main` import without an installed package.

import sys
import os

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from universe_terminal.command_catalog import InMemoryCommandCatalog
from universe_terminal.models import CatalogEntry, CommandFlag
from universe_terminal.safety_engine import SafetyEngine
from universe_terminal.sandbox import SandboxedFileSystem


@pytest.fixture
def sandbox(tmp_path):
    """A sandbox rooted in a fresh temporary directory."""
    fs = SandboxedFileSystem(tmp_path / "home")
    fs.ensure_base()
    return fs


@pytest.fixture
def safety_engine():
    return SafetyEngine()


@pytest.fixture
def catalog():
    """Small catalog in a fixed order; order decides ties when ranking."""
    return InMemoryCommandCatalog([
        CatalogEntry("ls", "List directory contents", (
            CommandFlag("-l", "Use a long listing format"),
            CommandFlag("-a", "Show hidden files"),
            CommandFlag("-h", "Human-readable sizes"),
            CommandFlag("-R", "List subdirectories recursively"),
            CommandFlag("-t", "Sort by modification time"),
            CommandFlag("-S", "Sort by file size"),
        ), example="ls -la", category="navigation"),
        CatalogEntry("cd", "Change the current directory", example="cd ~/projects", category="navigation"),
        CatalogEntry("cat", "Print file contents", (CommandFlag("-n", "Number all output lines"),),
                     example="cat notes.txt", category="viewing"),
        CatalogEntry("cp", "Copy files", (CommandFlag("-r", "Copy recursively"),), example="cp a b", category="files"),
        CatalogEntry("git", "Version control", (
            CommandFlag("status", "Show the working tree status"),
            CommandFlag("commit", "Record changes"),
        ), example="git status", category="development"),
        CatalogEntry("grep", "Search for patterns", (CommandFlag("-i", "Ignore case"),),
                     example="grep -i todo notes.txt", category="search"),
    ])
