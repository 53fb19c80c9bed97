"""Monitoring dashboard building blocks: DDNS, agent streams, authentication, notifications and service availability."""

__version__ = "0.1.0"