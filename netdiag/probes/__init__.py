"""Network probes. Each module exposes `probe_*(request, settings) -> Result`."""
