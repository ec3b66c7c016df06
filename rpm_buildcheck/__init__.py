"""RPM Build Check - build a container image for every RPM package.

This package lists the packages available in a base image, writes one
container recipe per package, and drives the builds through podman with a
bounded number of parallel jobs and a shared DNF cache.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
