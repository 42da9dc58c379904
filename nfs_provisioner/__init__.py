"""
NFS Provisioner - Kubernetes dynamic provisioner backed by the kernel NFS server.

This package provides the CLI, the NFS server lifecycle management and the
claim reconciliation loop that creates NFS exports and PersistentVolumes.
"""

__version__ = "0.1.0"
__all__ = ["api", "cli"]
