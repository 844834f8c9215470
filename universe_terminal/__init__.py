# universe_terminal/__init__.py
#
# Session & command execution engine for the Universe Terminal shell.

__version__ = "0.3.0"
