"""Command line interface for photoindex"""

from .main import cli, main

__all__ = ['cli', 'main']
