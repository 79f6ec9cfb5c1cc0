"""Linode provider: create/inspect/delete GPU instances via the Linode REST API.

The API signals failures in the payload (an ``errors`` list), so every
response is inspected for that shape before anything else.
"""

import json
import logging

import httpx

from aiquick.errors import ControlPlaneError, ControlPlaneUnavailable, ProvisionError
from aiquick.provisioning.types import Instance, InstanceSpec, InstanceStatus
from aiquick.readiness.poller import PollSpec, poll

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.linode.com/v4"
DEFAULT_IMAGE = "linode/ubuntu24.04"


# ── API helpers ───────────────────────────────────────────────────


def _error_reasons(payload):
    """Return the provider-reported reasons, or None if the payload is clean."""
    if not isinstance(payload, dict) or "errors" not in payload:
        return None
    errors = payload.get("errors") or []
    reasons = [e.get("reason", str(e)) if isinstance(e, dict) else str(e) for e in errors]
    return reasons or ["unknown error"]


def _redacted_payload(data):
    shown = dict(data)
    if shown.get("root_pass"):
        shown["root_pass"] = "***"
    user_data = (shown.get("metadata") or {}).get("user_data", "")
    if len(user_data) > 40:
        shown["metadata"] = {"user_data": f"{user_data[:40]}... ({len(user_data)} bytes)"}
    return shown


async def _api_request(method, path, data, token, api_url=DEFAULT_API_URL, dry_run=False, client=None):
    """Make an authenticated Linode API request.

    Returns:
        Parsed JSON response dict, or ``None`` in dry-run mode.

    Raises:
        ControlPlaneUnavailable: rate limited (429), server error (5xx) or a
            non-JSON body outside the 4xx range.
        ControlPlaneError: any other ``errors`` payload or error status.
        httpx.TransportError: the request never got a response.
    """
    url = f"{api_url}{path}"

    if dry_run:
        logger.info(f"[dry-run] {method} {url}")
        if data is not None:
            logger.info(f"[dry-run] payload: {json.dumps(_redacted_payload(data), indent=2)}")
        return None

    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    if client is None:
        async with httpx.AsyncClient() as own_client:
            resp = await own_client.request(method, url, json=data, headers=headers, timeout=60)
    else:
        resp = await client.request(method, url, json=data, headers=headers, timeout=60)

    unavailable = resp.status_code == 429 or resp.is_server_error
    try:
        payload = resp.json() if resp.content else {}
    except ValueError:
        reason = f"HTTP {resp.status_code}: non-JSON response from {method} {path}"
        if resp.is_client_error and not unavailable:
            raise ControlPlaneError([reason])
        raise ControlPlaneUnavailable([reason], resp.status_code)

    reasons = _error_reasons(payload)
    if unavailable:
        raise ControlPlaneUnavailable(reasons or [f"HTTP {resp.status_code} from {method} {path}"], resp.status_code)
    if reasons is not None:
        raise ControlPlaneError(reasons)
    if resp.is_error:
        raise ControlPlaneError([f"HTTP {resp.status_code} from {method} {path}"])
    return payload


# ── Core logic ─────────────────────────────────────────────────────


async def create_instance(token, spec: InstanceSpec, api_url=DEFAULT_API_URL, dry_run=False, client=None):
    """Create a Linode instance.

    POST /linode/instances

    A billable resource exists as soon as this returns.

    Returns:
        Instance with id and public address. In dry-run mode, placeholder values.

    Raises:
        ProvisionError: the provider rejected the request or returned no usable id/address.
    """
    logger.info(f"Creating instance '{spec.label}' (region={spec.region}, type={spec.instance_type}, image={spec.image})...")
    data = {
        "label": spec.label,
        "region": spec.region,
        "type": spec.instance_type,
        "image": spec.image,
        "root_pass": spec.root_pass,
        "authorized_keys": spec.authorized_keys,
        "booted": True,
    }
    if spec.user_data:
        data["metadata"] = {"user_data": spec.user_data}

    try:
        result = await _api_request("POST", "/linode/instances", data, token, api_url, dry_run, client)
    except ControlPlaneError as e:
        raise ProvisionError(e.reasons) from e

    if dry_run:
        return Instance(id="dry-run-id", label=spec.label, address="dry-run-host", region=spec.region, instance_type=spec.instance_type)

    instance = Instance.from_api(result)
    if not instance.id or instance.id == "None":
        raise ProvisionError(["Invalid response: no instance id"])
    if not instance.address:
        raise ProvisionError([f"Invalid response: instance {instance.id} has no public address"])
    if not instance.label:
        instance.label = spec.label
    logger.info(f"Instance created (id={instance.id}, address={instance.address}).")
    return instance


async def get_instance(token, instance_id, api_url=DEFAULT_API_URL, client=None):
    """Fetch a single instance.

    GET /linode/instances/{id}

    Raises:
        ControlPlaneError: the instance does not exist or the API reported an error.
    """
    result = await _api_request("GET", f"/linode/instances/{instance_id}", None, token, api_url, client=client)
    if not result.get("label"):
        raise ControlPlaneError([f"Instance {instance_id} not found"])
    return Instance.from_api(result)


async def delete_instance(token, instance_id, api_url=DEFAULT_API_URL, dry_run=False, client=None):
    """Delete a Linode instance.

    DELETE /linode/instances/{id}

    Failures are reported, never raised: deletion trouble is only a warning
    for the operator.

    Returns:
        True on success, False on failure.
    """
    logger.info(f"Deleting instance '{instance_id}'...")
    try:
        await _api_request("DELETE", f"/linode/instances/{instance_id}", None, token, api_url, dry_run, client)
    except (ControlPlaneError, httpx.HTTPError) as e:
        logger.warning(f"Failed to delete instance {instance_id}: {e}")
        return False

    if not dry_run:
        logger.info("Instance deleted.")
    return True


async def wait_for_status(
    token,
    instance_id,
    target_status=InstanceStatus.RUNNING,
    timeout=180,
    interval=5,
    api_url=DEFAULT_API_URL,
    client=None,
    clock=None,
    sleep=None,
):
    """Poll instance status until it matches *target_status* or timeout.

    Transport errors and ControlPlaneUnavailable count as "not yet"; any
    other ControlPlaneError (bad token, unknown instance) aborts immediately.

    Returns:
        The last Instance seen in *target_status*.

    Raises:
        ReadinessTimeout: status not reached within *timeout* seconds.
        ControlPlaneError: the API reported an error.
    """
    seen = {}

    async def _is_target():
        try:
            instance = await get_instance(token, instance_id, api_url, client)
        except ControlPlaneUnavailable as e:
            logger.debug(f"Status read failed, retrying: {e}")
            return False
        if seen.get("status") != instance.status:
            logger.info(f"Status: {instance.status.value}")
        seen["status"] = instance.status
        seen["instance"] = instance
        return instance.status == target_status

    spec = PollSpec(
        stage="wait-running",
        predicate=_is_target,
        interval=interval,
        timeout=timeout,
        fatal=True,
        fatal_errors=(ControlPlaneError,),
    )
    await poll(spec, clock=clock, sleep=sleep)
    return seen["instance"]


class LinodeProvisioner:
    """InstanceProvisioner bound to one API token.

    Thin adapter so the workflow can be driven against a fake in tests.
    """

    def __init__(self, token, api_url=DEFAULT_API_URL, dry_run=False, client=None):
        self.token = token
        self.api_url = api_url
        self.dry_run = dry_run
        self.client = client

    async def create(self, spec: InstanceSpec) -> Instance:
        return await create_instance(self.token, spec, self.api_url, self.dry_run, self.client)

    async def get(self, instance_id) -> Instance:
        return await get_instance(self.token, instance_id, self.api_url, self.client)

    async def delete(self, instance_id) -> bool:
        return await delete_instance(self.token, instance_id, self.api_url, self.dry_run, self.client)

    async def wait_until_running(self, instance_id, timeout=180, interval=5, clock=None, sleep=None) -> Instance:
        return await wait_for_status(
            self.token,
            instance_id,
            InstanceStatus.RUNNING,
            timeout=timeout,
            interval=interval,
            api_url=self.api_url,
            client=self.client,
            clock=clock,
            sleep=sleep,
        )
