"""Entrypoint for `python -m MipForge`.

Usage:
  python -m MipForge textures/brick.png -o ./out --export-png
"""
import logging

logger = logging.getLogger("mipforge")


def _run_cli():
    from .cli import main as cli_main
    logger.debug("Dispatching to CLI entrypoint.")
    cli_main()


if __name__ == "__main__":
    _run_cli()
