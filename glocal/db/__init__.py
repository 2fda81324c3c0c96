from .client import PrismaClientManager

__all__ = ["PrismaClientManager"]
