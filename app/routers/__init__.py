"""
API routers package
"""

from app.routers.partners import router as partners_router
from app.routers.categories import router as categories_router
from app.routers.files import router as files_router
from app.routers.learning import router as learning_router
from app.routers.transactions import router as transactions_router
