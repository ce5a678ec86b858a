"""Settings, observability and HTTP helpers shared by provisioner services."""
