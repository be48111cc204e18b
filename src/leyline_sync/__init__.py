"""Consumer-side synchronisation of Leyline tenets and bindings."""

__version__ = "0.1.0"
