"""Pure domain value objects shared by engines and modules.  ZERO I/O."""
