"""Oracle node bridging an AO pool process and a HyperBEAM inference backend."""

__version__ = "0.1.0"
