"""Provision, publish, deploy and verify the bike inventory service on AWS."""

__version__ = "0.1.0"
