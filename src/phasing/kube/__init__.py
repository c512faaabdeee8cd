"""Kubernetes API access: client loading and Service selector redirection."""
