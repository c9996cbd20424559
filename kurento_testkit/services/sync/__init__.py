from .latch import CountDownLatch

__all__ = ["CountDownLatch"]
