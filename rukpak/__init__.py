"""Bundle API models, CRD upgrade checks, registry+v1 conversion, event predicates and bundle packing."""

__version__ = "0.1.0"

__all__ = ["__version__"]