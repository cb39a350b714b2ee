# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

from bundle_cli.main import main

main()
