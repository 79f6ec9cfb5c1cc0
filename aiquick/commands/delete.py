"""Delete command: remove an instance by id after confirmation."""

import asyncio
import logging
import sys

import httpx

from aiquick.commands import EXIT_FAILED, EXIT_INTERRUPTED, EXIT_OK
from aiquick.config import resolve_token
from aiquick.deploy.cleanup import ask_yes_no
from aiquick.errors import ControlPlaneError
from aiquick.provisioning.linode import DEFAULT_API_URL, LinodeProvisioner

logger = logging.getLogger(__name__)


async def _handle_delete(args, prompt=ask_yes_no):
    instance_id = args.instance_id
    if not instance_id.isdigit():
        logger.error(f"Error: Instance ID must be numeric: {instance_id}")
        return EXIT_FAILED

    token = resolve_token(args.token)
    if not token and not args.dry_run:
        logger.error("Error: Linode API token required. Use --token or set LINODE_TOKEN.")
        return EXIT_FAILED

    provisioner = LinodeProvisioner(token or "", api_url=args.api_url, dry_run=args.dry_run)

    if args.dry_run:
        await provisioner.delete(instance_id)
        return EXIT_OK

    logger.info(f"Checking instance {instance_id}...")
    try:
        instance = await provisioner.get(instance_id)
    except (ControlPlaneError, httpx.HTTPError) as e:
        logger.error(f"Error: {e}")
        return EXIT_FAILED

    logger.info("")
    logger.warning("You are about to delete:")
    logger.info(f"  Instance ID: {instance.id}")
    logger.info(f"  Label: {instance.label}")
    logger.info(f"  Status: {instance.status.value}")
    logger.info(f"  Region: {instance.region or 'unknown'}")
    logger.info(f"  Type: {instance.instance_type or 'unknown'}")
    logger.info(f"  IP: {instance.address or 'unknown'}")
    logger.info("")

    if not args.yes and not prompt("Are you sure you want to delete this instance?", default=False):
        logger.info("Deletion cancelled.")
        return EXIT_OK

    if not await provisioner.delete(instance_id):
        return EXIT_FAILED
    logger.info(f"Instance {instance_id} ({instance.label}) has been deleted.")
    return EXIT_OK


def handle_delete(args):
    """CLI handler for 'delete'."""
    try:
        code = asyncio.run(_handle_delete(args))
    except KeyboardInterrupt:
        logger.error("Interrupted.")
        code = EXIT_INTERRUPTED
    sys.exit(code)


def register_delete_command(subparsers):
    """Register the delete subcommand."""
    parser = subparsers.add_parser("delete", help="Delete an instance by id")
    parser.add_argument("instance_id", help="Numeric instance id")
    parser.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")
    parser.add_argument("--token", default=None, help="Linode API token (fallback: LINODE_TOKEN / LINODE_CLI_TOKEN env var)")
    parser.add_argument("--api-url", default=DEFAULT_API_URL, help=f"API base URL (default: {DEFAULT_API_URL})")
    parser.add_argument("--dry-run", action="store_true", help="Print the delete request without executing")
    parser.set_defaults(func=handle_delete)
