"""Infrastructure: subprocess execution, sinks, storage, configuration files."""
