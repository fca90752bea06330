"""REST surface for the autonomy engine."""
