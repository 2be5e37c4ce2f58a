from .auth_routes import router as auth_router
from .profile_routes import router as profile_router
from .service_routes import public_router, router as service_router

__all__ = ["auth_router", "profile_router", "public_router", "service_router"]
