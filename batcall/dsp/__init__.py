"""Signal-processing helpers: window functions, Goertzel power matrix, segmentation."""
