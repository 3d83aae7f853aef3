"""Building blocks for running a WSL2-backed Linux virtual machine on Windows: logs, checks, disk images, distro control, updates and migration."""

__version__ = "0.1.0"