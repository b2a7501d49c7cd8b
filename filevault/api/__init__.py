"""
API Router module that combines all API endpoints
"""

import logging

from fastapi import APIRouter

from filevault.api.admin import router as admin_router
from filevault.api.files import router as files_router
from filevault.api.queue import router as queue_router

logger = logging.getLogger(__name__)

# Create the main router that includes all the others
router = APIRouter(prefix="/api/v1")

router.include_router(files_router)
router.include_router(admin_router)
router.include_router(queue_router)
