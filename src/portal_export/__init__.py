"""Export documents from an authenticated web portal, one shortcut at a time."""

__version__ = "0.1.0"
