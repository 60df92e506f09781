"""shelfscore: barcode to product page to quality score."""

__version__ = "0.1.0"
