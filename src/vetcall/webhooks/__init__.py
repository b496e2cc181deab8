"""Voice provider webhook ingress."""
