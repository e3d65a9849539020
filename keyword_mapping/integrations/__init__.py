"""Clients for external services: LLM providers, Google autosuggest and Google Ads."""
