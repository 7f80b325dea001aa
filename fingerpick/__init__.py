"""Group decision engine driven by touch contacts."""
