"""FarmLink marketplace core: order tracking and negotiation chat."""

__version__ = "0.1.0"
