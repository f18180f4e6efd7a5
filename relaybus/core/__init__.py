"""relaybus core — recipient lifecycle, registry, reply slots, and dispatch."""
