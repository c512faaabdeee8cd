"""
Phasing: route a Kubernetes Service's traffic to a process on your machine.
"""

__version__ = "0.2.0"
