"""Console and CI output of a finished plan."""
