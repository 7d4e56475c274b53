"""Detection configuration and named presets."""
