"""
Copyright © 2025 Merck & Co., Inc., Rahway, NJ, USA and its affiliates. All rights reserved.
This file is part of bcdecode.

This source code is licensed under the MIT License found in the
LICENSE file in the root directory of this source tree.
"""

import importlib.metadata
import os

try:
    __version__ = importlib.metadata.version("bcdecode")
except importlib.metadata.PackageNotFoundError:
    # running from a checkout of bin/
    __version__ = os.getenv("BCDECODE_VERSION", "2025.10.19")
