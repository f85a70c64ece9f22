"""
Payment provider integrations.

  registry  — static capability table (pure)
  routing   — picks a provider for a payment or withdrawal (pure)
  base      — ProviderAdapter interface and shared HTTP plumbing
  <name>    — one adapter module per provider
"""
