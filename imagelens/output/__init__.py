"""Console and JSON rendering of image summaries."""
