"""Deploy command: create a GPU instance and wait for the AI stack to come up."""

import asyncio
import logging
import os
import secrets
import signal
import sys

from aiquick.commands import EXIT_FAILED, EXIT_INTERRUPTED, EXIT_OK, EXIT_TERMINATED
from aiquick.config import build_params, deep_merge, default_label, load_config, resolve_token
from aiquick.deploy import CleanupCoordinator, CleanupPolicy, Orchestrator
from aiquick.deploy.orchestrate import build_instance_spec
from aiquick.provisioning.linode import DEFAULT_API_URL, LinodeProvisioner
from aiquick.readiness.poller import format_elapsed
from aiquick.redact import register_secret
from aiquick.userdata import build_user_data

logger = logging.getLogger(__name__)


def _parse_embeds(items):
    """Turn ``["KEY=path", ...]`` into a dict."""
    embeds = {}
    for item in items or []:
        key, sep, path = item.partition("=")
        if not sep or not key or not path:
            raise ValueError(f"Invalid --embed '{item}': expected NAME=PATH")
        embeds[key] = path
    return embeds


def resolve_params(args):
    """Merge CLI flags over the config file and build DeployParams.

    Exits with status 1 on missing token or invalid settings.
    """
    config = load_config(args.config) if args.config else {}
    overrides = {
        "region": args.region,
        "type": args.instance_type,
        "label": args.label,
        "ssh_key": args.ssh_key,
        "image": args.image,
        "api_url": args.api_url,
        "relay_url": args.relay_url,
    }
    merged = deep_merge(config, overrides)

    token = resolve_token(args.token)
    if not token and not args.dry_run:
        logger.error("Error: Linode API token required. Use --token or set LINODE_TOKEN.")
        sys.exit(EXIT_FAILED)

    root_pass = args.root_pass or os.environ.get("LINODE_ROOT_PASS") or merged.get("root_pass")
    generated = not root_pass
    if generated:
        root_pass = secrets.token_urlsafe(24)
    register_secret(root_pass)
    merged["root_pass"] = root_pass
    merged["label"] = merged.get("label") or default_label()

    try:
        template = args.user_data or merged.get("user_data")
        if template:
            embeds = deep_merge(merged.get("embed") or {}, _parse_embeds(args.embed))
            merged["user_data_b64"] = build_user_data(template, merged["label"], embeds)
        params = build_params(merged, token or "", dry_run=args.dry_run)
    except (ValueError, OSError) as e:
        logger.error(f"Error: {e}")
        sys.exit(EXIT_FAILED)
    return params, generated


def _log_plan(params):
    t, i = params.timeouts, params.intervals
    logger.info("[dry-run] Readiness stages:")
    logger.info(f"[dry-run]   wait-running: poll status every {i.running}s (up to {t.running}s)")
    logger.info(f"[dry-run]   install-first-event: subscribe {params.relay_url}/{params.label}/json, first message within {t.first_event}s")
    logger.info(f"[dry-run]   install-progress: until a message contains one of {', '.join(params.terminal_markers)}")
    logger.info(f"[dry-run]   reboot-grace: sleep {params.reboot_grace}s")
    logger.info(f"[dry-run]   wait-reachable: ssh root@<address> exit every {i.reachable}s (up to {t.reachable}s)")
    logger.info(f"[dry-run]   verify-services: containers {', '.join(params.services)}")
    logger.info(f"[dry-run]   verify-services: http://localhost:{params.health_port}{params.health_path} == 200 (up to {t.http}s, warn only)")
    logger.info(f"[dry-run]   verify-services: {params.model_id} at http://localhost:{params.model_port}{params.model_path} (up to {t.model}s, warn only)")


def _report(outcome, params, generated_root_pass):
    instance = outcome.instance
    if not outcome.succeeded:
        stage = outcome.stage.value if outcome.stage else "init"
        logger.error(f"Deployment failed at stage '{stage}': {outcome.reason}")
        if instance is not None and outcome.instance_exists:
            logger.error(f"Instance still exists: ID {instance.id} ({instance.label}, {instance.address})")
            logger.error(f"Delete it with: aiquick delete {instance.id}")
        return

    logger.info("")
    logger.info("Setup Completed!")
    logger.info("")
    logger.info("Instance Details:")
    logger.info(f"   Instance ID:    {instance.id}")
    logger.info(f"   Instance Label: {instance.label}")
    logger.info(f"   IP Address:     {instance.address}")
    logger.info(f"   Region:         {params.region}")
    logger.info(f"   Instance Type:  {params.instance_type}")
    logger.info("")
    logger.info("Access:")
    logger.info(f"   SSH:     ssh -i {params.ssh_key} root@{instance.address}")
    logger.info(f"   Web UI:  {instance.web_url}")
    if generated_root_pass:
        # stdout only, never the log file
        print(f"   Root password (generated): {params.root_pass}")
    logger.info("")
    logger.info(f"Total time: {format_elapsed(outcome.elapsed)}")
    for warning in outcome.warnings:
        logger.warning(f"WARNING: {warning}")


async def _handle_deploy(args):
    params, generated_root_pass = resolve_params(args)

    provisioner = LinodeProvisioner(params.token, api_url=params.api_url, dry_run=params.dry_run)
    if params.dry_run:
        await provisioner.create(build_instance_spec(params))
        _log_plan(params)
        return EXIT_OK

    orchestrator = Orchestrator(provisioner, params, cleanup=CleanupCoordinator(provisioner, args.cleanup))

    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    terminated = []

    def _on_sigterm():
        terminated.append(True)
        task.cancel()

    try:
        loop.add_signal_handler(signal.SIGTERM, _on_sigterm)
    except NotImplementedError:
        pass  # no SIGTERM hook on this platform

    try:
        outcome = await orchestrator.run()
    except asyncio.CancelledError:
        if orchestrator.outcome is not None:
            _report(orchestrator.outcome, params, generated_root_pass)
        if not terminated:
            raise
        return EXIT_TERMINATED
    finally:
        try:
            loop.remove_signal_handler(signal.SIGTERM)
        except NotImplementedError:
            pass

    _report(outcome, params, generated_root_pass)
    return EXIT_OK if outcome.succeeded else EXIT_FAILED


def handle_deploy(args):
    """CLI handler for 'deploy'."""
    try:
        code = asyncio.run(_handle_deploy(args))
    except KeyboardInterrupt:
        logger.error("Interrupted.")
        code = EXIT_INTERRUPTED
    sys.exit(code)


def register_deploy_command(subparsers):
    """Register the deploy subcommand."""
    parser = subparsers.add_parser("deploy", help="Create a GPU instance and bring up the AI stack")
    parser.add_argument("--config", default=None, help="YAML config file with deploy settings")
    parser.add_argument("--region", default=None, help="Region id (e.g. us-ord)")
    parser.add_argument("--type", dest="instance_type", default=None, help="Instance type (e.g. g2-gpu-rtx4000a1-s)")
    parser.add_argument("--label", default=None, help="Instance label; also the progress topic (default: ai-quickstart-<timestamp>)")
    parser.add_argument("--ssh-key", default=None, help="SSH private key path; <path>.pub is installed on the instance")
    parser.add_argument("--image", default=None, help="Base image (default: linode/ubuntu24.04)")
    parser.add_argument("--user-data", default=None, help="cloud-config template file")
    parser.add_argument("--embed", action="append", default=[], metavar="NAME=PATH", help="Embed a file base64-encoded into the template placeholder _NAME_PLACEHOLDER_")
    parser.add_argument("--token", default=None, help="Linode API token (fallback: LINODE_TOKEN / LINODE_CLI_TOKEN env var)")
    parser.add_argument("--root-pass", default=None, help="Root password (fallback: LINODE_ROOT_PASS env var, else generated)")
    parser.add_argument("--api-url", default=None, help=f"API base URL (default: {DEFAULT_API_URL})")
    parser.add_argument("--relay-url", default=None, help="Progress relay base URL (default: https://ntfy.sh)")
    parser.add_argument(
        "--cleanup",
        choices=[p.value for p in CleanupPolicy],
        default=CleanupPolicy.ASK.value,
        help="Delete the instance after a failure: ask, always or never (default: ask)",
    )
    parser.add_argument("--log-file", default=None, help="Also write a log file ('auto' for deploy-<timestamp>.log)")
    parser.add_argument("--dry-run", action="store_true", help="Print the create request and stages without executing")
    parser.set_defaults(func=handle_deploy)
