"""AI Squad installer — installs and reconciles agent definitions in a project."""

__version__ = "0.1.0"
