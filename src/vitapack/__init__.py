"""
vitapack: build and deploy tooling for PS Vita homebrew projects.
"""

__version__ = "0.1.0"
