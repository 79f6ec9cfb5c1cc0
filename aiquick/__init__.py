"""GPU quickstart: provision a Linode GPU instance and verify the AI stack comes up."""

__version__ = "0.1.0"
