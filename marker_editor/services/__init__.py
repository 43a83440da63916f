"""Services backing the Marker Editor: storage, action log and structured events."""
