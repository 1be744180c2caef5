"""
Utility modules for nas-mount

Submodules are imported directly (``from nasmount.utils.fstab import ...``);
nothing is re-exported here because fstab and the protocol adapters
import each other's packages.
"""
