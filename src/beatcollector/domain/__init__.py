"""Domain layer: enums, exceptions, ports and value objects."""
