# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
API Route Modules

FastAPI routers organized by domain:
- agent: Workflow execution, execution history and node types
"""
