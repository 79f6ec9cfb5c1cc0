"""Cleanup after a failed run: offer to delete the instance that was created."""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class CleanupPolicy(str, Enum):
    ASK = "ask"
    ALWAYS = "always"
    NEVER = "never"


def ask_yes_no(question, default=True):
    """Prompt on the terminal. Empty answer picks *default*; closed stdin declines."""
    suffix = "[Y/n]" if default else "[y/N]"
    try:
        answer = input(f"{question} {suffix}: ").strip()
    except EOFError:
        return False
    if not answer:
        return default
    return answer.lower() in ("y", "yes")


class CleanupCoordinator:
    """Offers deletion of a failed run's instance.

    Deletion failure is never fatal: it ends in a warning that repeats the
    instance id so it can be removed by hand.
    """

    def __init__(self, provisioner, policy=CleanupPolicy.ASK, prompt=ask_yes_no):
        self.provisioner = provisioner
        self.policy = CleanupPolicy(policy)
        self.prompt = prompt

    def _confirmed(self):
        if self.policy == CleanupPolicy.ALWAYS:
            return True
        if self.policy == CleanupPolicy.NEVER:
            return False
        return self.prompt("Do you want to delete the failed instance?", default=True)

    async def offer(self, instance) -> bool:
        """Offer to delete *instance*.

        Returns:
            True if the instance was deleted, False if it still exists.
        """
        if not self._confirmed():
            logger.info("Instance was not deleted. You can manage it from the Linode Cloud Manager")
            logger.info(f"Instance ID: {instance.id}")
            return False

        logger.info(f"Deleting instance (ID: {instance.id})...")
        if await self.provisioner.delete(instance.id):
            logger.info("Instance deleted successfully")
            return True

        logger.warning("Failed to delete instance. You may need to delete it manually from the Linode Cloud Manager")
        logger.info(f"Instance ID: {instance.id}")
        return False
