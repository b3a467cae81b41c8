"""Run registry and cache/artifact stores."""
