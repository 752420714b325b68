"""Statement adapters that turn exported files into ``RawTransaction`` rows."""
