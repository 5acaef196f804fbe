"""
Command-line interface for varnish.

- handler: argparse commands (init, store, env, export, run, list, check, project)
"""

__version__ = "0.1.0"
