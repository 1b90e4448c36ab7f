from api.v1.system.router import SYSTEM_ROUTER

__all__ = ["SYSTEM_ROUTER"]
