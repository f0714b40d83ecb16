"""marcalink - research-tracking storage shared between a disk-backed server and offline-capable clients."""

__version__ = "0.1.0"
