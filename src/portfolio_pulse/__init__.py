"""Indian equity and mutual fund portfolio tracker."""

__version__ = "0.1.0"
