"""Infrastructure components: configuration, settings, logging and reporting."""
