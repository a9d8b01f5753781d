"""Outbound integrations: the remote automation API and the alerting webhook."""
