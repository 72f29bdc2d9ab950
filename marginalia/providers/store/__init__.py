"""Knowledge store backends."""
