"""Per-call measurement stages and the detection engine that chains them."""
