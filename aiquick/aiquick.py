#!/usr/bin/env python3
"""AI quickstart tools: CLI entrypoint."""

import argparse

from aiquick.commands.delete import register_delete_command
from aiquick.commands.deploy import register_deploy_command
from aiquick.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Deploy a GPU instance running a self-hosted AI stack")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_deploy_command(subparsers)
    register_delete_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(getattr(args, "log_file", None))
    args.func(args)


if __name__ == "__main__":
    main()
