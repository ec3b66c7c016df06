"""Package catalog module.

This module handles:
- Listing the packages available in the base image
- Parsing the package manager's tabular output
- Writing one build recipe per package
"""

from rpm_buildcheck.catalog.parser import CatalogParseError, parse_package_listing

__all__ = ["CatalogParseError", "parse_package_listing"]
