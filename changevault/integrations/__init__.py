# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI admin routes and lifespan.
"""

from changevault.integrations.fastapi import (
    changevault_lifespan,
    get_changevault_service,
    register_changevault_routes,
    verify_api_key,
)

__all__ = [
    "changevault_lifespan",
    "get_changevault_service",
    "register_changevault_routes",
    "verify_api_key",
]
