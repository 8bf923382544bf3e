"""Fuzzy product search: index, filters, boost ranking, facets and autocomplete."""
