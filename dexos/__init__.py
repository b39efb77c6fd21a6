"""Simulated core of a small x86-64 kernel: heap, physical and virtual memory managers, text console, devices, block disks and small filesystems."""

__version__ = "0.1.0"