"""ReTI memory models (TI flat data memory, OS device map)."""
