"""Frame decoding, normalization and throttling helpers."""
