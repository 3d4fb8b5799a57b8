"""HTTP ingress for signed webhooks."""
