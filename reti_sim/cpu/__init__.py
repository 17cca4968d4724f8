"""ReTI CPU core components (registers, ALU)."""
