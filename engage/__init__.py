"""engage - gamified employee engagement backend."""
