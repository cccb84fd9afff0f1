# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause

import os

PUBLIC_REPO_DIR = os.path.dirname(os.path.abspath(__file__))
REGION_YAMLS_DIR = os.path.join(PUBLIC_REPO_DIR, "region_yamls")
