"""Memory-mapped peripherals (UART) and host bridges."""
