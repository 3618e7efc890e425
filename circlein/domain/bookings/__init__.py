from .router import qr_router, router

__all__ = ["router", "qr_router"]
