# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.


class BundleCliError(Exception):
    """Base class for failures reported to the user as a single-line message."""
