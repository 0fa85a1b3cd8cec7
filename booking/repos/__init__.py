"""Backend implementations of the booking repository protocols."""
