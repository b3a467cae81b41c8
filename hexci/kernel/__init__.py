"""hexCI kernel: domain models, ports, orchestration and configuration."""
