"""Convert, dump, query and edit flattened device tree blobs."""

__version__ = "1.0.0"