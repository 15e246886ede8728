"""Pure domain layer: value objects and rules, no I/O."""
