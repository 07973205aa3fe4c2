"""TCP chat server, headless client connection and tkinter chat window."""

__version__ = "1.0.0"

__all__ = ["__version__"]