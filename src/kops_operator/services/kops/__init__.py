"""kops state store and provisioning engine adapters."""
