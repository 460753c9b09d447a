"""Adapters binding the core ports to GitHub, SMTP, Prometheus and the filesystem."""
